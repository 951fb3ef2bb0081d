"""HTTP fetch collaborator with bounded timeouts."""

from __future__ import annotations

import logging
import threading
import time

import requests

from trialrag.config import settings
from trialrag.errors import FetchError

logger = logging.getLogger(__name__)


class PageFetcher:
    """Download raw markup for a URL.

    Parameters
    ----------
    timeout:
        Connect/read timeout in seconds for each request.
    max_retries:
        Total attempts per URL.  ``1`` means a single attempt, no retry.
    headers:
        Extra HTTP headers sent with every request.
    stop_event:
        When set, pending back-off waits are abandoned and the fetch fails
        immediately so a shutting-down batch is not held up.
    """

    def __init__(
        self,
        *,
        timeout: float = settings.fetch_timeout,
        max_retries: int = settings.fetch_max_retries,
        headers: dict[str, str] | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        self.timeout = timeout
        self.max_retries = max_retries
        self.headers = {"User-Agent": settings.user_agent, **(headers or {})}
        self._stop_event = stop_event

    def fetch(self, url: str) -> str:
        """Return the response body for *url* or raise :class:`FetchError`."""
        last_exc: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = requests.get(url, headers=self.headers, timeout=self.timeout)
                resp.raise_for_status()
                return resp.text
            except requests.RequestException as exc:
                last_exc = exc
                if attempt < self.max_retries:
                    wait = 2**attempt
                    logger.warning(
                        "Retry %d/%d for %s (wait %ds): %s", attempt, self.max_retries, url, wait, exc
                    )
                    if self._stop_event is not None:
                        if self._stop_event.wait(wait):
                            break
                    else:
                        time.sleep(wait)
        raise FetchError(url, str(last_exc)) from last_exc


def fetch_markup(url: str, timeout: float = settings.fetch_timeout) -> str:
    """Single-attempt convenience wrapper around :class:`PageFetcher`."""
    return PageFetcher(timeout=timeout, max_retries=1).fetch(url)
