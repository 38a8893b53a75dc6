"""One live browser connection, pointed at either the reference or the new site.

:class:`BrowserSession` owns the WebDriver, waits for pages to be ready,
runs the in-page scripts and builds :class:`~site_compare.capture.Capture`
objects. Navigation and script timeouts are retried a bounded number of
times; exhausting them raises :class:`~site_compare.exceptions.SessionTimeout`
which the crawler records as a cancelled visit.
"""
from __future__ import annotations

import random
import re
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar
from urllib.parse import urlsplit

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options as ChromeOptions

from site_compare.browser import readiness, scripts
from site_compare.browser.signature import build_signature
from site_compare.capture import Capture
from site_compare.context import Context
from site_compare.crawler.models import ClickTarget, FormOutcome, QueueItem
from site_compare.exceptions import ContractError, NoCapture, SessionTimeout
from site_compare.parser.html_parser import sanitize_and_hash

__all__ = ("BrowserSession", "build_chrome_options")

_T = TypeVar("_T")
_TIMED_OUT_RE = re.compile(r"timed?\s*out", re.IGNORECASE)
_SELECT_FORM_RE = re.compile(r"^select", re.IGNORECASE)


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, (TimeoutException, TimeoutError)):
        return True
    return isinstance(exc, WebDriverException) and bool(_TIMED_OUT_RE.search(str(exc)))


def build_chrome_options(context: Context, which: str) -> ChromeOptions:
    cfg = context.config.browser
    options = ChromeOptions()
    if cfg.headless:
        options.add_argument("--headless=new")
    options.add_argument(f"--window-size={cfg.width},{cfg.height}")
    options.add_argument("--disable-gpu")
    options.add_argument("--no-sandbox")
    if cfg.workdir:
        profile = Path(cfg.workdir) / f"{context.role_name}-{which}"
        options.add_argument(f"--user-data-dir={profile}")
    for arg in cfg.extra_args:
        options.add_argument(arg)
    if cfg.binary:
        options.binary_location = cfg.binary
    options.accept_insecure_certs = True
    options.set_capability("goog:loggingPrefs", {"performance": "ALL"})
    return options


class BrowserSession:
    """WebDriver session for one side (``ref`` or ``new``) of a role."""

    def __init__(self, context: Context, which: str, driver: Any, base_url: Optional[str] = None) -> None:
        if which not in ("ref", "new"):
            raise ContractError(f"which must be 'ref' or 'new', got {which!r}")
        self.context = context
        self.which = which
        self.driver = driver
        self.base_url = (base_url or context.config.base_url(which)).rstrip("/")
        self.log = context.child(which).logger
        self._cfg = context.config.browser
        self._perf = readiness.PerformanceLog(driver, self._cfg.perf_ring_size)
        self._signature: Optional[str] = None
        self.stats: Dict[str, int] = {"navigations": 0, "clicks": 0, "captures": 0, "retries": 0, "forms": 0}

    @classmethod
    def create(cls, context: Context, which: str) -> BrowserSession:
        """Open a new Chrome session on the configured driver."""
        options = build_chrome_options(context, which)
        context.logger.info("%s: connecting to webdriver at %s", which, context.config.browser.driver_url)
        driver = webdriver.Remote(command_executor=context.config.browser.driver_url, options=options)
        driver.set_window_size(context.config.browser.width, context.config.browser.height)
        driver.set_script_timeout(context.config.browser.timeout)
        return cls(context, which, driver)

    # ------------------------------------------------------------------ #
    # Low-level primitives                                               #
    # ------------------------------------------------------------------ #

    def _with_retries(self, label: str, retries: int, sleep: float, action: Callable[[], _T]) -> _T:
        for attempt in range(1, retries + 1):
            try:
                return action()
            except (WebDriverException, TimeoutError) as exc:
                if not _is_timeout(exc):
                    raise
                if attempt == retries:
                    raise SessionTimeout(f"{self.which}: {label} timed out after {retries} attempt(s)") from exc
                self.stats["retries"] += 1
                self.log.debug("%s timed out (attempt %d/%d), sleeping %.1fs", label, attempt, retries, sleep)
                time.sleep(sleep)
        raise ContractError("retries must be >= 1")

    def execute(self, script: str, *args: Any) -> Any:
        retry = self._cfg.exec_js
        return self._with_retries("exec_js", retry.retries, retry.sleep, lambda: self.driver.execute_script(script, *args))

    def execute_async(self, script: str, *args: Any) -> Any:
        retry = self._cfg.exec_js
        return self._with_retries(
            "exec_js_async", retry.retries, retry.sleep, lambda: self.driver.execute_async_script(script, *args)
        )

    def current_url(self) -> str:
        return self.driver.current_url

    def current_path(self) -> str:
        return urlsplit(self.driver.current_url).path or "/"

    def screenshot(self) -> bytes:
        return self.driver.get_screenshot_as_png()

    # ------------------------------------------------------------------ #
    # Operations                                                         #
    # ------------------------------------------------------------------ #

    def navigate(self, path: str) -> None:
        if not path:
            raise ContractError("navigate() without path")
        url = self.base_url + (path if path.startswith("/") else f"/{path}")
        self.log.debug("navigate %s", url)
        self._perf.drain()
        retry = self._cfg.navigate
        self._with_retries("navigate", retry.retries, retry.sleep, lambda: self.driver.get(url))
        self._signature = None
        self.stats["navigations"] += 1

    def click(self, locator: str) -> bool:
        if not locator:
            raise ContractError("click() without locator")
        self._perf.drain()
        clicked = bool(self.execute(scripts.CLICK_BY_LOCATOR_JS, locator))
        # the page may have changed even when the click handler failed
        self._signature = None
        if clicked:
            self.stats["clicks"] += 1
            self.log.debug("clicked %s", locator)
        else:
            self.log.warning("element not found for %s", locator)
        return clicked

    def signature(self) -> str:
        if self._signature is None:
            walk = self.execute(scripts.SIGNATURE_JS) or {}
            self._signature = build_signature(walk, same_host=self.context.config.crawl.same_host, logger=self.log)
            self.log.debug("signature computed %s", self._signature)
        return self._signature

    def discover_clickables(self) -> List[ClickTarget]:
        by_click = self.context.config.crawl.by_click
        raw = self.execute(scripts.DISCOVER_CLICKABLES_JS, ", ".join(by_click.finders), list(by_click.css_excludes))
        return [ClickTarget.from_dict(entry) for entry in raw or [] if entry.get("locator")]

    def find_equivalent_locator(self, target: ClickTarget) -> Optional[str]:
        min_score = self.context.config.crawl.by_click.equivalent_min_score
        found = self.execute(scripts.FIND_EQUIVALENT_JS, target.to_dict(), min_score)
        if not found or not found.get("locator"):
            self.log.info("no equivalent for %s (text=%r)", target.locator, target.text)
            return None
        self.log.info("equivalent for %s is %s (score=%.2f)", target.locator, found["locator"], found.get("score", 0))
        return found["locator"]

    # ------------------------------------------------------------------ #
    # Readiness & capture                                                #
    # ------------------------------------------------------------------ #

    def wait_for_page_ready(self) -> readiness.ReadyState:
        cfg = self._cfg
        ok, alerts = readiness.wait_for_body(self.driver, timeout=cfg.timeout, poll=cfg.poll_interval, logger=self.log)
        if not ok:
            return readiness.ReadyState(ready=False, alerts=alerts)
        logs, _ = readiness.wait_for_network_idle(
            self._perf, timeout=cfg.timeout, quiet_ms=cfg.quiet_ms, poll=cfg.poll_interval
        )
        stable = readiness.wait_for_dom_stable(
            self.execute, timeout=cfg.timeout, quiet_ms=cfg.quiet_ms, poll=cfg.poll_interval
        )
        if not stable:
            self.log.warning("DOM not fully stable after %.1fs", cfg.timeout)
        return readiness.ReadyState(ready=True, alerts=alerts, logs=logs)

    def _http_status(self, logs: List[Dict[str, Any]]) -> readiness.DocumentResponse:
        final_url = self.current_url()
        doc = readiness.main_document(logs, final_url)
        if doc is not None and doc.status:
            return doc
        fetched = self.execute_async(scripts.FETCH_STATUS_JS) or {}
        if fetched.get("status"):
            content_type = str(fetched.get("ct") or "").lower().split(";", 1)[0].strip()
            return readiness.DocumentResponse(status=int(fetched["status"]), content_type=content_type, url=final_url)
        content_type = str(self.execute(scripts.CONTENT_TYPE_JS) or "").lower().split(";", 1)[0].strip()
        self.log.debug("no status for %s, assuming 200", final_url)
        return readiness.DocumentResponse(status=200, content_type=content_type, url=final_url)

    def capture_current_page(self, state: Optional[readiness.ReadyState] = None) -> Capture:
        state = state if state is not None else self.wait_for_page_ready()
        if not state.ready:
            raise NoCapture(f"{self.which}: page not ready at {self.current_url()}")
        logs = state.logs or self._perf.read()
        doc = self._http_status(logs)
        htmls = self.context.config.compare.htmls
        page = sanitize_and_hash(
            self.driver.page_source,
            ignore_selectors=htmls.ignore_dom_selectors,
            ignore_attributes=htmls.ignore_dom_attributes,
            ignore_text=htmls.ignore_text_patterns,
        )
        wants_png = self.context.config.artifacts.screenshots or self.context.config.compare.screenshots.enabled
        self.stats["captures"] += 1
        return Capture(
            which=self.which,
            html=page.html,
            dom_hash=page.dom_hash,
            status=doc.status,
            content_type=doc.content_type or doc.headers.get("content-type", ""),
            final_url=self.current_url(),
            signature=self.signature(),
            response_url=doc.url,
            headers=doc.headers,
            alerts=tuple(state.alerts),
            screenshot=self.screenshot() if wants_png else None,
        )

    # ------------------------------------------------------------------ #
    # Composite operations (also exposed by the worker)                  #
    # ------------------------------------------------------------------ #

    def navigate_and_capture(self, path: str) -> Capture:
        self.navigate(path)
        return self.capture_current_page()

    def _click_target(self, target: ClickTarget, allow_equivalent: bool) -> bool:
        if self.click(target.locator):
            return True
        locator = self.find_equivalent_locator(target) if allow_equivalent else None
        return bool(locator) and self.click(locator)

    def click_and_capture(self, target: ClickTarget, *, allow_equivalent: bool = False) -> Capture:
        """Click *target*, falling back to an equivalent element when allowed."""
        if not self._click_target(target, allow_equivalent):
            raise NoCapture(f"{self.which}: cannot click {target.locator}")
        return self.capture_current_page()

    def replay_hop(self, hop: QueueItem, *, allow_equivalent: bool = False) -> bytes:
        """Perform one chain hop the way it was first performed and return a screenshot.

        A click hop goes through the same equivalent-element fallback as
        :meth:`click_and_capture`, so the new side reaches the same place again.
        """
        if hop.is_link:
            self.navigate(hop.path or "/")
        elif hop.target is None or not self._click_target(hop.target, allow_equivalent):
            raise NoCapture(f"{self.which}: replay of {hop.signature()} failed")
        state = self.wait_for_page_ready()
        if not state.ready:
            raise NoCapture(f"{self.which}: page not ready after replaying {hop.signature()}")
        return self.screenshot()

    def handle_form(self, selector: str, submit_selector: Optional[str] = None) -> FormOutcome:
        """Walk every enabled option of the *selector* select.

        Each option is set through the DOM with a ``change`` event, then
        *submit_selector* is clicked when given. Only ``select`` selectors are
        handled; other forms are reported as not found.
        """
        if not selector:
            raise ContractError("handle_form() without selector")
        if not _SELECT_FORM_RE.match(selector):
            self.log.info("form %r skipped: only select forms are handled", selector)
            return FormOutcome(selector=selector)
        values = self.execute(scripts.FORM_OPTIONS_JS, selector)
        if values is None:
            self.log.info("form %r not found on %s", selector, self.current_url())
            return FormOutcome(selector=selector)
        self.log.info("handling %r form (%d option(s))", selector, len(values))
        cfg = self._cfg
        applied: List[str] = []
        for value in values:
            self._signature = None
            if not self.execute(scripts.SELECT_OPTION_JS, selector, value):
                self.log.debug("form %r: unable to set %r, trying next", selector, value)
                continue
            if submit_selector and not self.execute(scripts.SUBMIT_FORM_JS, selector, submit_selector):
                self.log.debug("form %r: submit %r not found, trying next", selector, submit_selector)
                continue
            readiness.wait_for_dom_stable(
                self.execute, timeout=cfg.timeout, quiet_ms=cfg.quiet_ms, poll=cfg.poll_interval
            )
            applied.append(str(value))
        self._signature = None
        self.stats["forms"] += 1
        return FormOutcome(selector=selector, found=True, applied=tuple(applied))

    def reset(self, path: str = "/") -> None:
        """Clear SPA storage and reload *path* with a cache-busting parameter."""
        self.execute(scripts.RESET_STORAGE_JS)
        sep = "&" if "?" in path else "?"
        self.navigate(f"{path}{sep}__screset={random.randint(0, 999_999)}")
        self.wait_for_page_ready()

    def close(self) -> None:
        try:
            self.driver.quit()
        except WebDriverException as exc:
            self.log.warning("quit failed: %s", exc)
