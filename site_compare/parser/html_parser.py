"""HTML sanitisation and hashing for SiteCompare.

The DOM hash computed here is the primary HTML-equality oracle between the
reference and the new site. The rendered markup is normalised so that noise
which legitimately differs between two deployments does not count:

* elements matching the *ignore selectors* (``script``, ``style`` by
  default) are removed;
* attributes whose **name** matches one of the *ignore attribute* regexes
  (``^aria-`` by default) are deleted;
* in remaining attribute values, 10-digit Unix timestamps become ``<TS>``
  and ``v=...`` cache-busting query parameters are stripped;
* text matching the *ignore text patterns* is replaced by ``<var>``;
* whitespace runs collapse to one space.

The result is NFC-normalised, UTF-8 encoded and hashed with MD5.
"""
from __future__ import annotations

import hashlib
import re
import unicodedata
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from bs4 import BeautifulSoup
from bs4.element import Tag

__all__: Sequence[str] = ("SanitizedPage", "sanitize_html", "dom_hash", "sanitize_and_hash")

_TIMESTAMP_RE = re.compile(r"\b\d{10}\b")
_CACHE_BUST_RE = re.compile(r"(?:^|[?&])v=[^&]*(?=&|$)", re.IGNORECASE)
_DANGLING_QMARK_RE = re.compile(r"\?(?=&|$)")
_DANGLING_AMP_RE = re.compile(r"&(?=&|$)")
_WS_RE = re.compile(r"\s+")


@dataclass(slots=True)
class SanitizedPage:
    html: str
    dom_hash: str


def _normalize_value(value: str) -> str:
    value = _TIMESTAMP_RE.sub("<TS>", value)
    value = _CACHE_BUST_RE.sub("", value)
    value = _DANGLING_QMARK_RE.sub("", value, count=1)
    return _DANGLING_AMP_RE.sub("", value, count=1)


def _strip_attributes(tag: Tag, attr_rx: Sequence[re.Pattern[str]]) -> None:
    for name in list(tag.attrs):
        if any(rx.search(name) for rx in attr_rx):
            del tag.attrs[name]
            continue
        value = tag.attrs[name]
        if isinstance(value, list):
            # class, rel ... come back as lists from bs4
            tag.attrs[name] = [_normalize_value(v) for v in value]
        elif isinstance(value, str):
            tag.attrs[name] = _normalize_value(value)


def sanitize_html(
    html: str,
    *,
    ignore_selectors: Iterable[str] = ("script", "style"),
    ignore_attributes: Sequence[re.Pattern[str]] = (),
    ignore_text: Sequence[re.Pattern[str]] = (),
) -> str:
    """Return the canonical text of *html* (see module docstring)."""
    soup = BeautifulSoup(html or "", "html.parser")

    for selector in ignore_selectors:
        for element in soup.select(selector):
            element.decompose()

    for tag in soup.find_all(True):
        _strip_attributes(tag, ignore_attributes)

    out = str(soup)
    for pattern in ignore_text:
        out = pattern.sub("<var>", out)
    return _WS_RE.sub(" ", out)


def dom_hash(text: str) -> str:
    return hashlib.md5(unicodedata.normalize("NFC", text or "").encode("utf-8")).hexdigest()


def sanitize_and_hash(
    html: str,
    *,
    ignore_selectors: Iterable[str] = ("script", "style"),
    ignore_attributes: Sequence[re.Pattern[str]] = (),
    ignore_text: Sequence[re.Pattern[str]] = (),
) -> SanitizedPage:
    text = sanitize_html(
        html,
        ignore_selectors=ignore_selectors,
        ignore_attributes=ignore_attributes,
        ignore_text=ignore_text,
    )
    return SanitizedPage(html=text, dom_hash=dom_hash(text))
