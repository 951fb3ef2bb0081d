"""Content extraction from fetched HTML.

Pages are classified into two shapes:

* **clinical-trial reports**, recognised by their report tables or headings
  or by the report URL path, are walked section by section and flattened
  into ``label: value`` lines, one per table row;
* **generic pages** get a best-effort pass over the main content region
  (headings, tables, definition lists, lists) with a raw-text fallback.

Both paths produce a single :class:`ExtractedDocument`.
"""

from __future__ import annotations

import logging
import re
import time
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from trialrag.errors import FetchError
from trialrag.ingestion.fetcher import PageFetcher
from trialrag.ingestion.models import DocumentMetadata, ExtractedDocument, PageShape
from trialrag.ingestion.normalizer import strip_boilerplate

logger = logging.getLogger(__name__)

CLINICAL_TRIAL_PREFIX = "CLINICAL TRIAL: "

JUNK_SELECTOR = "script, style, iframe, noscript, nav, footer, .navbar, #messageVue, .chat-popup"
REPORT_MARKERS = ("table.ctReportTable", "h3.ctSubHeading", "h2.brief-title")
REPORT_URL_PATTERNS = ("/clinicalTrials/report/", "/report/clinicalTrials/")
MAIN_CONTENT_SELECTORS = ("#main", ".main", ".content", "main", "article", ".container")

_PARENTHETICAL = re.compile(r"\(.*?\)")
_HEADING = re.compile(r"^h[1-6]$")


def _text(tag: Tag) -> str:
    """Visible text of *tag* with whitespace collapsed."""
    return " ".join(tag.get_text(" ").split())


def _has_class(tag: Tag, name: str) -> bool:
    return name in (tag.get("class") or [])


def is_report_url(url: str) -> bool:
    return any(p in url for p in REPORT_URL_PATTERNS)


def derive_file_name(url: str) -> str:
    """Derive a filename-like identifier from *url*.

    The last non-empty path segment is used when present, otherwise the host
    with dots replaced by underscores.  Report URLs are prefixed with
    ``"CLINICAL TRIAL: "``; every other page is suffixed with ``":<url>"`` so
    two sites sharing a trailing segment never collide.
    """
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return f"webpage_{int(time.time() * 1000)}:{url}"

    segments = [segment for segment in parsed.path.split("/") if segment]
    name = segments[-1] if segments else parsed.netloc.replace(".", "_")

    if is_report_url(url):
        return CLINICAL_TRIAL_PREFIX + name
    return f"{name}:{url}"


class ContentExtractor:
    """Turn raw markup into one :class:`ExtractedDocument`.

    Parameters
    ----------
    id_label:
        First-cell label of the report table row carrying the trial identifier.
    text_cap:
        Maximum characters kept from any single text block on generic pages.
    min_structured_chars:
        Generic pages whose structured pass yields less than this fall back
        to the raw visible text of the content region.
    """

    def __init__(
        self,
        *,
        id_label: str = "NCTID",
        text_cap: int = 500,
        min_structured_chars: int = 100,
    ) -> None:
        self.id_label = id_label
        self.text_cap = text_cap
        self.min_structured_chars = min_structured_chars

    # -- public API -----------------------------------------------------------

    def extract(self, markup: str, source_url: str) -> ExtractedDocument:
        soup = BeautifulSoup(markup, "html.parser")
        for tag in soup.select(JUNK_SELECTOR):
            if not tag.decomposed:
                tag.decompose()

        title = _text(soup.title) if soup.title else ""
        file_name = derive_file_name(source_url)

        if self.is_report_page(soup, source_url):
            logger.info("Detected clinical trial page, using report extractor: %s", source_url)
            trial_id = self._extract_trial_id(soup)
            text = self._extract_report(soup, trial_id)
            shape = PageShape.CLINICAL_TRIAL
            source_key = CLINICAL_TRIAL_PREFIX + trial_id if trial_id else file_name
        else:
            logger.info("Generic webpage detected, using generic extractor: %s", source_url)
            trial_id = None
            text = self._extract_generic(soup)
            shape = PageShape.GENERIC
            source_key = file_name

        metadata = DocumentMetadata(
            source_url=source_url,
            title=title,
            shape=shape,
            file_name=file_name,
            source_key=source_key,
            trial_id=trial_id,
        )
        logger.info("Extracted %d chars from %s (key=%r)", len(text), source_url, source_key)
        return ExtractedDocument(text=text, metadata=metadata)

    @staticmethod
    def is_report_page(soup: BeautifulSoup, url: str) -> bool:
        return any(soup.select_one(marker) is not None for marker in REPORT_MARKERS) or is_report_url(url)

    # -- clinical-trial reports -----------------------------------------------

    def _extract_trial_id(self, soup: BeautifulSoup) -> str | None:
        for row in soup.select("table.ctReportTable tr"):
            cells = row.find_all("td")
            if len(cells) >= 2 and _text(cells[0]).lower() == self.id_label.lower():
                value = _PARENTHETICAL.sub("", _text(cells[1])).strip()
                return value or None
        return None

    def _extract_report(self, soup: BeautifulSoup, trial_id: str | None) -> str:
        for tag in soup.select(".sidenav"):
            if not tag.decomposed:
                tag.decompose()

        parts: list[str] = []
        if trial_id:
            parts.append(f"--- {CLINICAL_TRIAL_PREFIX}{trial_id} ---\n\n")

        heading = soup.select_one("h2.brief-title")
        if heading is not None:
            title = _text(heading)
            if title:
                parts.append(f"Title: {title}\n\n")
        else:
            logger.warning("No h2.brief-title found")

        for section in soup.select("div.dynamic-heading"):
            sub = section.select_one("h3.ctSubHeading")
            if sub is not None:
                name = _text(sub)
                if name and name.lower() != "summary":
                    parts.append(f"\n=== {name} ===\n")

            tables = 0
            for sibling in section.find_next_siblings():
                if _has_class(sibling, "dynamic-heading"):
                    break
                if sibling.name == "table" and _has_class(sibling, "ctReportTable"):
                    parts.append(self._report_table(sibling))
                    tables += 1
            logger.debug("Extracted %d tables for section", tables)

        parts.append(self._external_links(soup))
        return "".join(parts).strip()

    @staticmethod
    def _report_table(table: Tag) -> str:
        lines: list[str] = []
        for row in table.find_all("tr"):
            cells = row.find_all("td")
            if len(cells) < 2:
                continue
            label = _text(cells[0])
            value = strip_boilerplate(_text(cells[1]))
            # An empty value still emits its label.
            if label:
                lines.append(f"{label}: {value}\n")
        return "".join(lines)

    @staticmethod
    def _external_links(soup: BeautifulSoup) -> str:
        headings = soup.select("h5.link-type-heading")
        if not headings:
            return ""

        parts = ["\n=== Resources/Links ===\n"]
        for heading in headings:
            link_type = _text(heading)
            if not link_type:
                continue
            parts.append(f"\n{link_type}:\n")
            listing = heading.find_next_sibling()
            if listing is not None and listing.name == "ul" and _has_class(listing, "external-links-list"):
                for li in listing.find_all("li"):
                    item = _text(li)
                    if item:
                        parts.append(f"- {item}\n")
        return "".join(parts)

    # -- generic pages --------------------------------------------------------

    @staticmethod
    def _main_region(soup: BeautifulSoup) -> Tag:
        for selector in MAIN_CONTENT_SELECTORS:
            region = soup.select_one(selector)
            if region is not None:
                return region
        return soup.body or soup

    def _extract_generic(self, soup: BeautifulSoup) -> str:
        main = self._main_region(soup)
        parts: list[str] = []

        h1 = main.find("h1")
        if h1 is not None:
            parts.append(f"=== {_text(h1)} ===\n\n")

        for table in main.find_all("table"):
            parts.append(self._generic_table(table))

        for dl in main.find_all("dl"):
            for term, definition in zip(dl.find_all("dt"), dl.find_all("dd")):
                t, d = _text(term), _text(definition)
                if t and d:
                    parts.append(f"{t}: {d}\n")

        for header in main.find_all(["h2", "h3", "h4"]):
            header_text = _text(header)
            if not header_text:
                continue
            parts.append(f"\n{header_text}:\n")
            for sibling in header.find_next_siblings():
                if _HEADING.match(sibling.name or ""):
                    break
                if sibling.name in ("ul", "ol"):
                    for item in sibling.find_all("li"):
                        parts.append(f"- {_text(item)[: self.text_cap]}\n")
                    continue
                text = _text(sibling)
                if text:
                    parts.append(f"{text[: self.text_cap]}\n")

        result = "".join(parts).strip()
        if len(result) < self.min_structured_chars:
            result = _text(main)
        return result

    @staticmethod
    def _generic_table(table: Tag) -> str:
        lines: list[str] = []
        for row in table.find_all("tr"):
            cells = row.find_all(["td", "th"])
            if len(cells) == 2:
                label, value = _text(cells[0]), _text(cells[1])
                if label:
                    lines.append(f"{label}: {value}\n")
            elif cells:
                texts = [t for t in (_text(c) for c in cells) if t]
                lines.append(" | ".join(texts) + "\n")
        return "".join(lines)


class WebPageReader:
    """Fetch + extract one URL.

    A fetch failure yields an empty list rather than an exception, so the
    caller can treat it as "no usable content".
    """

    def __init__(
        self,
        fetcher: PageFetcher | None = None,
        extractor: ContentExtractor | None = None,
    ) -> None:
        self.fetcher = fetcher or PageFetcher()
        self.extractor = extractor or ContentExtractor()

    def load(self, url: str, *, strict: bool = False) -> list[ExtractedDocument]:
        """Return the extracted document for *url*.

        With ``strict=True`` a :class:`FetchError` propagates instead of
        being turned into an empty list.
        """
        logger.info("Fetching content from URL: %s", url)
        try:
            markup = self.fetcher.fetch(url)
        except FetchError as exc:
            if strict:
                raise
            logger.error("Failed to fetch URL content: %s (%s)", url, exc.reason)
            return []
        return [self.extractor.extract(markup, url)]
