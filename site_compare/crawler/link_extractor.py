# site_compare/crawler/link_extractor.py
"""
Link extraction for the by-link crawl mode.

Links come from the reference capture only: what appears on the new site
but not on the reference one is a new feature, not something to compare.
"""
from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup
from bs4.element import Tag

from site_compare.config import ByLinkConfig

__all__ = ("extract_links", "path_query", "same_host")


def _denied(value: str, deny: Sequence[re.Pattern[str]]) -> bool:
    return any(rx.search(value) for rx in deny)


def _allowed(value: str, allow: Sequence[re.Pattern[str]], deny: Sequence[re.Pattern[str]]) -> bool:
    """Deny wins; an empty allow-list allows everything."""
    if _denied(value, deny):
        return False
    if not allow:
        return True
    return any(rx.search(value) for rx in allow)


def same_host(url: str, host: str) -> bool:
    return (urlsplit(url).hostname or "").lower() == (host or "").lower()


def path_query(url: str) -> str:
    """Path plus query of *url*, ``/`` when empty."""
    parts = urlsplit(url)
    path = parts.path or "/"
    return f"{path}?{parts.query}" if parts.query else path


def _href_values(soup: BeautifulSoup, find: str, member: str) -> Iterable[str]:
    for tag in soup.select(find):
        if not isinstance(tag, Tag):
            continue
        value = tag.get(member)
        if isinstance(value, list):
            value = " ".join(value)
        if isinstance(value, str) and value.strip():
            yield value.strip()


def extract_links(
    html: str,
    base_url: str,
    by_link: ByLinkConfig,
    *,
    same_host_only: bool = True,
    page_url: Optional[str] = None,
) -> List[str]:
    """
    Return the sorted, de-duplicated absolute URLs reachable from *html*.

    Each configured finder selects elements by CSS and reads one attribute.
    The raw href is checked against href allow/deny, its fragment is dropped
    (and the query too unless ``honor_query``), then the absolute URL is
    checked against url allow/deny (relative hrefs resolve against *page_url*
    when given, else the base URL) and, if requested, the base host.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    host = urlsplit(base_url).hostname or ""
    anchor = page_url or base_url + "/"
    found: set[str] = set()

    for finder in by_link.finders:
        for href in _href_values(soup, finder.find, finder.member):
            if not _allowed(href, by_link.href_allow, by_link.href_deny):
                continue
            parts = urlsplit(href)
            query = parts.query if by_link.honor_query else ""
            relative = urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))
            absolute = urljoin(anchor, relative) if relative else anchor
            if not _allowed(absolute, by_link.url_allow, by_link.url_deny):
                continue
            if same_host_only and not same_host(absolute, host):
                continue
            found.add(absolute)

    return sorted(found)
