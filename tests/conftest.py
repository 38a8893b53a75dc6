# File: tests/conftest.py
from __future__ import annotations

import io
import json
import logging
import socket
import socketserver
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from PIL import Image
from selenium.common.exceptions import NoAlertPresentException

from site_compare.browser import scripts
from site_compare.capture import Capture
from site_compare.config import CompareConfig
from site_compare.context import Context
from site_compare.crawler.models import ClickTarget, FormOutcome, QueueItem
from site_compare.crawler.pair import Both
from site_compare.exceptions import NoCapture
from site_compare.parser.html_parser import sanitize_and_hash

REF = "http://ref.test"
NEW = "http://new.test"
BASES = {"ref": REF, "new": NEW}

PAGE = "<html><body><h1>{title}</h1>{body}</body></html>"


def page(title: str, *links: str, body: str = "") -> str:
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    return PAGE.format(title=title, body=anchors + body)


def place_signature(which: str, path: str) -> str:
    return f"top:{BASES[which]}{path}|doc:1#1"


def free_port() -> int:
    """A port nothing listens on."""
    with socket.socket() as sock:
        sock.bind(("localhost", 0))
        return sock.getsockname()[1]


# --------------------------------------------------------------------------- #
#                                  Logging                                    #
# --------------------------------------------------------------------------- #


@pytest.fixture(autouse=True)
def propagate_logs(monkeypatch):
    """Let caplog see the project logger, which does not propagate by default."""
    monkeypatch.setattr(logging.getLogger("SiteCompare"), "propagate", True)


# --------------------------------------------------------------------------- #
#                                  Config                                     #
# --------------------------------------------------------------------------- #


@pytest.fixture()
def make_config(tmp_path) -> Callable[..., CompareConfig]:
    """
    Factory for a fast CompareConfig: short timeouts, no retry sleeps,
    artifacts under tmp_path. Keyword sections are merged into the defaults.
    """

    def _make(**sections: Any) -> CompareConfig:
        data: Dict[str, Any] = {
            "bases": dict(BASES),
            "browser": {
                "timeout": 0.3,
                "quiet_ms": 0,
                "poll_interval": 0.01,
                "navigate": {"retries": 3, "sleep": 0},
                "exec_js": {"retries": 2, "sleep": 0},
            },
            "output_dir": str(tmp_path / "results"),
        }
        for key, value in sections.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return CompareConfig(**data)

    return _make


@pytest.fixture()
def config(make_config) -> CompareConfig:
    return make_config()


@pytest.fixture()
def context(config) -> Context:
    return Context.for_role(config, "default")


# --------------------------------------------------------------------------- #
#                                  Images                                     #
# --------------------------------------------------------------------------- #


@pytest.fixture()
def make_png() -> Callable[..., bytes]:
    """PNG of *size*, white, with the first *changed* pixels painted black."""

    def _make(size: Tuple[int, int] = (10, 10), changed: int = 0) -> bytes:
        image = Image.new("RGB", size, (255, 255, 255))
        width = size[0]
        for i in range(changed):
            image.putpixel((i % width, i // width), (0, 0, 0))
        buf = io.BytesIO()
        image.save(buf, format="PNG")
        return buf.getvalue()

    return _make


# --------------------------------------------------------------------------- #
#                               Fake WebDriver                                #
# --------------------------------------------------------------------------- #


class _NoAlert:
    @property
    def alert(self):
        raise NoAlertPresentException("no alert")


class FakeDriver:
    """
    In-memory WebDriver: serves *pages* (path -> (status, html)), answers the
    in-page scripts and emits Document entries on the performance log.
    """

    def __init__(self, base: str, pages: Dict[str, Tuple[int, str]], png: bytes = b"") -> None:
        self.base = base
        self.pages = pages
        self.png = png
        self.current_url = "about:blank"
        self.page_source = ""
        self.clickables: Dict[str, str] = {}  # locator -> path
        self.redirects: Dict[str, str] = {}  # path -> path
        self.discovered: List[Dict[str, str]] = []
        self.equivalent: Optional[Dict[str, Any]] = None
        self.forms: Dict[str, List[str]] = {}  # select selector -> option values
        self.submits: Dict[str, str] = {}  # submit selector -> path
        self.get_error: Optional[Exception] = None
        self.switch_to = _NoAlert()
        self.script_calls: List[str] = []
        self.visited: List[str] = []
        self._logs: List[Dict[str, Any]] = []
        self.quit_called = False

    # navigation ---------------------------------------------------------------

    def _load(self, url: str) -> None:
        path = url[len(self.base):] or "/"
        path = path.split("?", 1)[0]
        if path in self.redirects:
            path = self.redirects[path]
            url = self.base + path
        status, html = self.pages.get(path, (404, "<html><body>not found</body></html>"))
        self.current_url = url
        self.page_source = html
        self.visited.append(path)
        message = {
            "message": {
                "method": "Network.responseReceived",
                "params": {
                    "type": "Document",
                    "timestamp": float(len(self.visited)),
                    "response": {"url": url, "status": status, "mimeType": "text/html", "headers": {}},
                },
            }
        }
        self._logs.append({"message": json.dumps(message)})

    def get(self, url: str) -> None:
        if self.get_error is not None:
            raise self.get_error
        self._load(url)

    def get_log(self, kind: str) -> List[Dict[str, Any]]:
        entries, self._logs = self._logs, []
        return entries

    def find_elements(self, by: str, value: str) -> List[str]:
        return ["body"] if self.page_source else []

    # scripts -------------------------------------------------------------------

    def execute_script(self, script: str, *args: Any) -> Any:
        if script == scripts.SIGNATURE_JS:
            self.script_calls.append("signature")
            return {"topHref": self.current_url, "topSig": "1#1", "frames": []}
        if script == scripts.DOM_FINGERPRINT_JS:
            return [len(self.page_source), 1]
        if script == scripts.CLICK_BY_LOCATOR_JS:
            self.script_calls.append(f"click {args[0]}")
            path = self.clickables.get(args[0])
            if path is None:
                return False
            self._load(self.base + path)
            return True
        if script == scripts.DISCOVER_CLICKABLES_JS:
            return list(self.discovered)
        if script == scripts.FIND_EQUIVALENT_JS:
            return self.equivalent
        if script == scripts.FORM_OPTIONS_JS:
            options = self.forms.get(args[0])
            return list(options) if options is not None else None
        if script == scripts.SELECT_OPTION_JS:
            self.script_calls.append(f"select {args[1]}")
            return args[1] in self.forms.get(args[0], [])
        if script == scripts.SUBMIT_FORM_JS:
            self.script_calls.append(f"submit {args[1]}")
            path = self.submits.get(args[1])
            if path is None:
                return False
            self._load(self.base + path)
            return True
        if script == scripts.CONTENT_TYPE_JS:
            return "text/html"
        if script == scripts.RESET_STORAGE_JS:
            self.script_calls.append("reset")
            return None
        raise AssertionError(f"unexpected script: {script[:60]!r}")

    def execute_async_script(self, script: str, *args: Any) -> Any:
        return {}

    def get_screenshot_as_png(self) -> bytes:
        return self.png

    def quit(self) -> None:
        self.quit_called = True


@pytest.fixture()
def fake_driver() -> Callable[..., FakeDriver]:
    def _make(which: str = "ref", pages: Optional[Dict[str, Tuple[int, str]]] = None, png: bytes = b"png") -> FakeDriver:
        return FakeDriver(BASES[which], pages if pages is not None else {"/": (200, page("home"))}, png)

    return _make


# --------------------------------------------------------------------------- #
#                                 Fake pair                                   #
# --------------------------------------------------------------------------- #


class FakePair:
    """
    SessionPair double. Each side serves its own *pages*; *clicks* maps a
    locator to the path it leads to; *clickables* maps a path to the targets
    discovered there. Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        ref_pages: Dict[str, Tuple[int, str]],
        new_pages: Optional[Dict[str, Tuple[int, str]]] = None,
        *,
        clicks: Optional[Dict[str, str]] = None,
        new_clicks: Optional[Dict[str, str]] = None,
        clickables: Optional[Dict[str, List[ClickTarget]]] = None,
        failures: Optional[Dict[str, Exception]] = None,
    ) -> None:
        self.pages = {"ref": ref_pages, "new": new_pages if new_pages is not None else ref_pages}
        self.clicks = {"ref": clicks or {}, "new": new_clicks if new_clicks is not None else (clicks or {})}
        self.clickables = clickables or {}
        self.failures = failures or {}
        self.current: Dict[str, Optional[str]] = {"ref": None, "new": None}
        self.calls: List[str] = []
        self.closed = False
        self.is_ready = True
        self.form_options: Dict[str, Dict[str, List[str]]] = {"ref": {}, "new": {}}

    def _capture(self, which: str, path: str) -> Capture:
        status, html = self.pages[which].get(path, (404, "<html><body>not found</body></html>"))
        sanitized = sanitize_and_hash(html)
        self.current[which] = path
        return Capture(
            which=which,
            html=sanitized.html,
            dom_hash=sanitized.dom_hash,
            status=status,
            content_type="text/html",
            final_url=BASES[which] + path,
            signature=place_signature(which, path),
        )

    def navigate_and_capture(self, path: str) -> Both[Capture]:
        self.calls.append(f"navigate {path}")
        if path in self.failures:
            raise self.failures[path]
        return Both(self._capture("ref", path), self._capture("new", path))

    def click_and_capture(self, item: QueueItem) -> Both[Capture]:
        self.calls.append(f"click {item.locator}")
        captures = {}
        for which in ("ref", "new"):
            path = self.clicks[which].get(item.locator or "")
            if path is None:
                raise NoCapture(f"{which}: cannot click {item.locator}")
            captures[which] = self._capture(which, path)
        return Both(captures["ref"], captures["new"])

    def replay_hop(self, hop: QueueItem) -> Both[bytes]:
        self.calls.append(f"replay {hop.signature()}")
        for which in ("ref", "new"):
            if hop.is_link:
                self.current[which] = hop.path or "/"
            else:
                self.current[which] = self.clicks[which].get(hop.locator or "", self.current[which])
        return Both(b"", b"")

    def signature(self, which: str = "ref") -> str:
        path = self.current[which]
        return place_signature(which, path) if path is not None else "top:about:blank|doc:0#0"

    def discover_clickables(self) -> List[ClickTarget]:
        return list(self.clickables.get(self.current["ref"], []))

    def handle_form(self, selector: str, submit_selector: Optional[str] = None) -> Both[FormOutcome]:
        self.calls.append(f"form {selector}")
        if selector in self.failures:
            raise self.failures[selector]
        outcomes = {}
        for which in ("ref", "new"):
            options = self.form_options[which].get(selector)
            outcomes[which] = FormOutcome(selector, found=options is not None, applied=tuple(options or ()))
        return Both(outcomes["ref"], outcomes["new"])

    def ready(self) -> bool:
        return self.is_ready

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_pair() -> Callable[..., FakePair]:
    return FakePair


# --------------------------------------------------------------------------- #
#                               Stub RPC worker                               #
# --------------------------------------------------------------------------- #


class _StubHandler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        raw = self.rfile.read()
        self.server.requests.append(raw.decode("utf-8"))
        answer = self.server.responder(raw.decode("utf-8"))
        if answer is None:
            # never answer: hold the connection until the test is over
            self.server.release.wait(5)
            return
        self.wfile.write(answer)


class StubServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, responder: Callable[[str], Optional[bytes]]) -> None:
        self.responder = responder
        self.requests: List[str] = []
        self.release = threading.Event()
        super().__init__(("localhost", 0), _StubHandler)

    @property
    def port(self) -> int:
        return self.server_address[1]


@pytest.fixture()
def stub_worker():
    """Start stub workers in threads; *responder(request) -> bytes | None*."""
    servers: List[StubServer] = []

    def _start(responder: Callable[[str], Optional[bytes]]) -> StubServer:
        server = StubServer(responder)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return server

    yield _start
    for server in servers:
        server.release.set()
        server.shutdown()
        server.server_close()


@pytest.fixture()
def serve():
    """Run any socketserver in a background thread until the test ends."""
    servers: List[socketserver.BaseServer] = []

    def _serve(server: socketserver.BaseServer) -> socketserver.BaseServer:
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return server

    yield _serve
    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture()
def output_dir(tmp_path) -> Path:
    return tmp_path / "results"
