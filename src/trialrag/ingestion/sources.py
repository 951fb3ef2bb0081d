"""Source identifiers → fetchable URLs."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from enum import Enum
from pathlib import Path

from trialrag.config import settings


class SourceCategory(str, Enum):
    """How a raw identifier is turned into a URL.

    * ``clinical_trial`` — ``<base>/clinicalTrials/<id>``
    * ``url`` — the identifier already is the URL
    """

    CLINICAL_TRIAL = "clinical_trial"
    URL = "url"


def build_source_url(
    identifier: str,
    category: SourceCategory | str = SourceCategory.CLINICAL_TRIAL,
    *,
    base_url: str = settings.clinical_trial_base_url,
) -> str:
    identifier = identifier.strip()
    category = SourceCategory(category)
    if category is SourceCategory.CLINICAL_TRIAL:
        return f"{base_url.rstrip('/')}/clinicalTrials/{identifier}"
    return identifier


def read_identifiers(path: str | Path) -> list[str]:
    """Read one identifier per line, ignoring blank lines and ``#`` comment lines."""
    lines = (line.strip() for line in Path(path).read_text(encoding="utf-8").splitlines())
    return [line for line in lines if line and not line.startswith("#")]


def iter_nonblank(identifiers: Iterable[str | None]) -> Iterator[str]:
    """Yield stripped identifiers, skipping ``None`` and blank entries."""
    for identifier in identifiers:
        if identifier is None or not identifier.strip():
            continue
        yield identifier.strip()
