"""Page readiness: body present → network idle → DOM stable.

All three stages poll with a fixed sleep against the browser timeout; none
of them blocks indefinitely. Network activity is read from Chrome's
``performance`` log (DevTools ``Network.*`` events), which requires the
session to be created with ``goog:loggingPrefs = {"performance": "ALL"}``.
"""
from __future__ import annotations

import json
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from selenium.common.exceptions import (
    NoAlertPresentException,
    UnexpectedAlertPresentException,
    WebDriverException,
)
from selenium.webdriver.common.by import By

from site_compare.browser.scripts import DOM_FINGERPRINT_JS

__all__ = (
    "DocumentResponse",
    "ReadyState",
    "PerformanceLog",
    "decode_message",
    "main_document",
    "handle_alert",
    "wait_for_body",
    "wait_for_network_idle",
    "wait_for_dom_stable",
)


@dataclass(slots=True)
class DocumentResponse:
    status: int
    content_type: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    timestamp: float = 0.0


@dataclass(slots=True)
class ReadyState:
    ready: bool
    alerts: List[str] = field(default_factory=list)
    logs: List[Dict[str, Any]] = field(default_factory=list)


def decode_message(entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the inner DevTools message of a performance-log entry, or None."""
    raw = entry.get("message") if isinstance(entry, dict) else None
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    message = data.get("message") if isinstance(data, dict) else None
    return message if isinstance(message, dict) else None


def _is_document_response(message: Dict[str, Any]) -> bool:
    return (
        message.get("method") == "Network.responseReceived"
        and (message.get("params") or {}).get("type") == "Document"
    )


def main_document(logs: List[Dict[str, Any]], final_url: str) -> Optional[DocumentResponse]:
    """Pick the Document response for *final_url*, else the latest one seen."""
    docs: List[DocumentResponse] = []
    for entry in logs or ():
        message = decode_message(entry)
        if not message or not _is_document_response(message):
            continue
        params = message.get("params") or {}
        response = params.get("response") or {}
        headers = {str(k).lower(): str(v) for k, v in (response.get("headers") or {}).items()}
        content_type = response.get("mimeType") or headers.get("content-type") or ""
        docs.append(
            DocumentResponse(
                status=int(response.get("status") or 0),
                content_type=content_type.lower().split(";", 1)[0].strip(),
                url=response.get("url") or "",
                headers=headers,
                timestamp=float(params.get("timestamp") or 0.0),
            )
        )
    if not docs:
        return None
    for doc in docs:
        if doc.url == final_url:
            return doc
    return max(docs, key=lambda d: d.timestamp)


class PerformanceLog:
    """Reads the driver's performance log and keeps a bounded ring of raw entries."""

    def __init__(self, driver: Any, ring_size: int = 2000) -> None:
        self._driver = driver
        self.ring: Deque[Dict[str, Any]] = deque(maxlen=ring_size)

    def read(self) -> List[Dict[str, Any]]:
        entries = self._driver.get_log("performance") or []
        self.ring.extend(entries)
        return list(entries)

    def drain(self) -> None:
        """Discard pending events so the next read only sees the next navigation."""
        self.read()


def handle_alert(driver: Any, logger: Optional[logging.Logger] = None) -> Optional[str]:
    """Accept a native alert if one is open and return its text."""
    try:
        alert = driver.switch_to.alert
        text = alert.text
        alert.accept()
    except NoAlertPresentException:
        return None
    if logger is not None:
        logger.warning("got alert %r", text)
    return text or None


def wait_for_body(
    driver: Any,
    *,
    timeout: float,
    poll: float = 0.1,
    logger: Optional[logging.Logger] = None,
) -> Tuple[bool, List[str]]:
    alerts: List[str] = []
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            if driver.find_elements(By.CSS_SELECTOR, "body"):
                return True, alerts
        except UnexpectedAlertPresentException:
            pass
        text = handle_alert(driver, logger)
        if text:
            alerts.append(text)
        time.sleep(poll)
    return False, alerts


def wait_for_network_idle(
    perf: PerformanceLog,
    *,
    timeout: float,
    quiet_ms: int = 500,
    poll: float = 0.1,
) -> Tuple[List[Dict[str, Any]], bool]:
    """Wait until a Document response was seen and the network stayed quiet for *quiet_ms*."""
    collected: List[Dict[str, Any]] = []
    had_document = False
    start = time.monotonic()
    last_event = start
    while time.monotonic() - start < timeout:
        try:
            entries = perf.read()
        except WebDriverException:
            entries = []
        for entry in entries:
            collected.append(entry)
            message = decode_message(entry)
            if not message or not str(message.get("method") or "").startswith("Network."):
                continue
            last_event = time.monotonic()
            had_document = had_document or _is_document_response(message)
        if had_document and (time.monotonic() - last_event) * 1000 >= quiet_ms:
            break
        time.sleep(poll)
    return collected, had_document


def wait_for_dom_stable(
    run_js: Callable[[str], Any],
    *,
    timeout: float,
    quiet_ms: int = 500,
    poll: float = 0.1,
) -> bool:
    """True once ``[textLen, elementCount]`` stayed unchanged for *quiet_ms*."""
    last: Any = None
    start = time.monotonic()
    last_change = start
    while time.monotonic() - start < timeout:
        fingerprint = run_js(DOM_FINGERPRINT_JS)
        if last is not None and fingerprint != last:
            last_change = time.monotonic()
        last = fingerprint
        if (time.monotonic() - last_change) * 1000 >= quiet_ms:
            return True
        time.sleep(poll)
    return False
