"""Page signatures: where a browser currently is.

A signature is a plain string::

    top:<href>|doc:<textLen>#<elementCount>|if:<idx>#<id>#<src>#<path>|...

built from what :data:`~site_compare.browser.scripts.SIGNATURE_JS` returns.
Two sessions on different hosts are "at the same place" when their
signatures are equal once the top URL is reduced to path and query.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

__all__: Sequence[str] = (
    "build_signature",
    "signature_without_url",
    "same_place",
    "signature_path",
    "signature_frame_parts",
)

_SEP = "|"


def _path_query(url: str) -> str:
    parts = urlsplit(url)
    path = parts.path or "/"
    return f"{path}?{parts.query}" if parts.query else path


def build_signature(
    walk: Mapping[str, Any],
    *,
    same_host: bool = False,
    logger: Optional[logging.Logger] = None,
) -> str:
    """Assemble the signature string from the in-page walk result.

    ``walk`` is ``{"topHref", "topSig", "frames": [{index, id, src, href, sameOrigin}]}``.
    Cross-origin frames are kept with an empty path; when *same_host* is
    requested they are reported through *logger*.
    """
    parts = [f"top:{walk.get('topHref') or ''}", f"doc:{walk.get('topSig') or ''}"]
    for frame in walk.get("frames") or []:
        href = frame.get("href") or ""
        path = "" if not href or href == "about:blank" else urlsplit(href).path
        parts.append(
            f"if:{frame.get('index', '')}#{frame.get('id') or ''}#{frame.get('src') or ''}#{path}"
        )
        if not frame.get("sameOrigin", True) and same_host and logger is not None:
            logger.warning("cross-origin frame %s (src=%r)", frame.get("index"), frame.get("src"))
    return _SEP.join(parts)


def signature_without_url(signature: str) -> str:
    """Replace the full top URL by its path and query so hosts do not matter."""
    if not signature:
        return ""
    top, sep, rest = signature.partition(_SEP)
    if top.startswith("top:"):
        top = "top:" + _path_query(top[4:])
    return top + sep + rest


def same_place(left: str, right: str) -> bool:
    return signature_without_url(left) == signature_without_url(right)


def signature_path(signature: str) -> str:
    """Path of the top URL recorded in *signature* (``/`` if none)."""
    top = signature.partition(_SEP)[0]
    if not top.startswith("top:"):
        return "/"
    return urlsplit(top[4:]).path or "/"


def signature_frame_parts(signature: str) -> list[str]:
    """Everything after the top URL: the DOM fingerprint and the frame descriptors."""
    return signature.split(_SEP)[1:] if signature else []
