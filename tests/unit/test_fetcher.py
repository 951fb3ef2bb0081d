"""Unit tests for the HTTP fetch collaborator and source URL building."""

from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from trialrag.errors import FetchError
from trialrag.ingestion.fetcher import PageFetcher, fetch_markup
from trialrag.ingestion.sources import (
    SourceCategory,
    build_source_url,
    iter_nonblank,
    read_identifiers,
)

URL = "https://scge.mcw.edu/platform/data/report/clinicalTrials/NCT04208529"


def _response(text: str = "<html></html>") -> MagicMock:
    resp = MagicMock()
    resp.text = text
    resp.raise_for_status.return_value = None
    return resp


class TestPageFetcher:
    def test_returns_body(self) -> None:
        with patch("trialrag.ingestion.fetcher.requests.get", return_value=_response("<p>hi</p>")) as get:
            assert PageFetcher(timeout=5).fetch(URL) == "<p>hi</p>"
        assert get.call_args.kwargs["timeout"] == 5
        assert "User-Agent" in get.call_args.kwargs["headers"]

    def test_single_attempt_by_default(self) -> None:
        with patch(
            "trialrag.ingestion.fetcher.requests.get",
            side_effect=requests.ConnectionError("refused"),
        ) as get:
            with pytest.raises(FetchError) as info:
                PageFetcher(max_retries=1).fetch(URL)
        assert get.call_count == 1
        assert info.value.url == URL
        assert "refused" in info.value.reason

    def test_http_error_status(self) -> None:
        resp = _response()
        resp.raise_for_status.side_effect = requests.HTTPError("404 Not Found")
        with patch("trialrag.ingestion.fetcher.requests.get", return_value=resp):
            with pytest.raises(FetchError, match="404"):
                fetch_markup(URL)

    def test_retries_with_backoff(self) -> None:
        with patch(
            "trialrag.ingestion.fetcher.requests.get",
            side_effect=[requests.Timeout("slow"), requests.Timeout("slow"), _response("ok")],
        ) as get, patch("trialrag.ingestion.fetcher.time.sleep") as sleep:
            assert PageFetcher(max_retries=3).fetch(URL) == "ok"
        assert get.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [2, 4]

    def test_stop_event_abandons_retries(self) -> None:
        stop = threading.Event()
        stop.set()
        with patch(
            "trialrag.ingestion.fetcher.requests.get",
            side_effect=requests.Timeout("slow"),
        ) as get:
            with pytest.raises(FetchError):
                PageFetcher(max_retries=5, stop_event=stop).fetch(URL)
        assert get.call_count == 1

    def test_max_retries_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            PageFetcher(max_retries=0)


class TestSources:
    def test_clinical_trial_url(self) -> None:
        assert build_source_url(" NCT04208529 ", base_url="https://scge.mcw.edu/platform/data/report/") == URL

    def test_url_category_passes_through(self) -> None:
        assert build_source_url("https://example.org/a", SourceCategory.URL) == "https://example.org/a"

    def test_category_from_string(self) -> None:
        assert build_source_url("https://example.org/a", "url") == "https://example.org/a"

    def test_unknown_category(self) -> None:
        with pytest.raises(ValueError):
            build_source_url("x", "pdf")

    def test_read_identifiers(self, tmp_path: Path) -> None:
        path = tmp_path / "ids.txt"
        path.write_text("# trials to refresh\nNCT1\n\n  NCT2  \n#NCT3\n")
        assert read_identifiers(path) == ["NCT1", "NCT2"]

    def test_iter_nonblank(self) -> None:
        assert list(iter_nonblank(["", "  ", None, " NCT1 ", "NCT2"])) == ["NCT1", "NCT2"]
