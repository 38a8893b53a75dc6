# === FILE: site_compare/crawler/crawler.py ===
"""Crawl one role across the reference and the new site in lockstep."""
from __future__ import annotations

import re
from collections import deque
from pathlib import Path
from typing import Deque, Dict, Iterable, List, Optional, Set

from selenium.common.exceptions import WebDriverException

from site_compare.aggregator import CrawlResult
from site_compare.browser.signature import same_place
from site_compare.capture import Capture, write_screenshot
from site_compare.config import RoleConfig
from site_compare.context import Context
from site_compare.crawler.link_extractor import path_query
from site_compare.crawler.models import ClickTarget, QueueItem
from site_compare.crawler.pair import SIDES, Both, SessionPair
from site_compare.exceptions import RemoteDriverError, RestoreError, SessionError

__all__ = ("Crawler", "INTERMEDIATE_RESULTS")

INTERMEDIATE_RESULTS = 100


def _denied(value: str, patterns: Iterable[re.Pattern[str]]) -> bool:
    return bool(value) and any(p.search(value) for p in patterns)


class Crawler:
    """Обход одной роли: очередь мест, дедупликация по сигнатуре, сравнение пар снимков.

    Очередь и множество просмотренных сигнатур принадлежат только этому
    объекту; всё выполняется в одном потоке.
    """

    def __init__(
        self,
        context: Context,
        role: RoleConfig,
        pair: SessionPair,
        result: Optional[CrawlResult] = None,
    ) -> None:
        self.context = context
        self.config = context.config
        self.role = role
        self.pair = pair
        self.log = context.child(f"crawler.{context.role_name}").logger
        self.role_dir: Path = context.role_dir
        self.result = result or CrawlResult(role=context.role_name, role_dir=str(self.role_dir))
        self.frontier: Deque[QueueItem] = deque()
        self._dequeued: Set[str] = set()
        self._successive: Dict[str, int] = {}

    # ------------------------------------------------------------------ #
    # Setup                                                              #
    # ------------------------------------------------------------------ #

    def initialize(self) -> None:
        """Fill the frontier from the role signatures, else from its routes."""
        if self.role.signatures:
            for chain in self.role.signatures:
                if not chain.chain:
                    self.log.warning("initial signature %r has an empty chain", chain.label)
                    continue
                item = QueueItem.from_chain(chain.chain)
                self.log.debug("initial signature %r -> %s", chain.label, item.signature())
                self.frontier.append(item)
        else:
            for route in self.role.routes:
                self.frontier.append(QueueItem.link(route))
        self.log.info("frontier initialized with %d item(s)", len(self.frontier))

    # ------------------------------------------------------------------ #
    # Main loop                                                          #
    # ------------------------------------------------------------------ #

    def run(self) -> CrawlResult:
        self.role_dir.mkdir(parents=True, exist_ok=True)
        self.log.info("starting %r role crawl", self.context.role_name)
        if not self.frontier:
            self.initialize()
        while self.frontier:
            if not self.visit(self.frontier.popleft()):
                self.result.stopped_reason = "max_successive_errors"
                self.log.warning("cancelling %r role crawl: max successive errors reached", self.context.role_name)
                break
            if self._max_reached():
                self.result.stopped_reason = "max_visited"
                self.log.info("cancelling %r role crawl: max visited reached", self.context.role_name)
                break
        self.log.info("ending %r role crawl", self.context.role_name)
        for line in self.result.summary_lines():
            self.log.info("%s", line)
        return self.result

    def visit(self, item: QueueItem) -> bool:
        """Resolve one item on both sides; returns False when the crawl must stop."""
        key = item.signature()
        if key in self._dequeued:
            self.log.debug("already seen %s", key)
            return True
        self._dequeued.add(key)

        counters = self.result.counters
        counters.visited += 1
        item.stamp(counters.visited)
        self.log.debug("visiting #%d %s (frontier=%d)", item.visited, item.describe(), len(self.frontier))

        try:
            captures = self._resolve(item)
        except SessionError as exc:
            self.log.info("#%d cancelled (%s): %s", item.visited, exc.reason, exc)
            self.result.cancel(item, exc.reason)
            return self._after(self._successive_inc(exc.reason))
        except (WebDriverException, RemoteDriverError) as exc:
            reason = exc.name if isinstance(exc, RemoteDriverError) else type(exc).__name__
            self.log.warning("#%d unexpected driver error: %s", item.visited, exc)
            self.result.mark_unexpected(item, reason)
            return self._after(self._successive_inc(f"unexpected_{reason}"))

        if item.is_link:
            counters.links += 1
            counters.depth = max(counters.depth, item.depth)
            if not item.origin:
                item.destination = captures.ref.signature
        else:
            counters.clicks += 1

        self._compare_and_record(item, captures)
        self._successive.clear()
        return self._after(True)

    def _after(self, proceed: bool) -> bool:
        if self.result.counters.visited % INTERMEDIATE_RESULTS == 0:
            self.log.info("intermediate results for %r role:", self.context.role_name)
            for line in self.result.summary_lines():
                self.log.info("%s", line)
        return proceed

    def _max_reached(self) -> bool:
        limit = self.config.crawl.max_visited
        return limit > 0 and self.result.counters.visited >= limit

    def _successive_inc(self, reason: str) -> bool:
        self._successive[reason] = self._successive.get(reason, 0) + 1
        return self._successive[reason] < self.config.crawl.max_successive_errors

    # ------------------------------------------------------------------ #
    # Resolution                                                         #
    # ------------------------------------------------------------------ #

    def _resolve(self, item: QueueItem) -> Both[Capture]:
        if item.is_link:
            return self.pair.navigate_and_capture(item.path or "/")
        self.restore(item)
        return self.pair.click_and_capture(item)

    def restore(self, item: QueueItem) -> int:
        """Bring both browsers back to ``item.origin`` by replaying its chain.

        Returns the number of replayed hops.
        """
        origin = item.origin or ""
        if same_place(self.pair.signature("ref"), origin):
            return 0
        shots = self.config.crawl.by_click.intermediate_screenshots
        replayed = 0
        for hop in item.chain:
            pngs = self.pair.replay_hop(hop)
            replayed += 1
            self.log.debug("#%d replayed hop %d: %s", item.visited, replayed, hop.describe())
            if shots:
                for which in SIDES:
                    if pngs[which]:
                        write_screenshot(
                            pngs[which], self.role_dir, which, item, origin,
                            counter=item.visited, suffix=f"hop{replayed}",
                        )
            if same_place(self.pair.signature("ref"), origin):
                return replayed
        raise RestoreError(f"origin not reached after {replayed} replayed hop(s) for {item.signature()}")

    # ------------------------------------------------------------------ #
    # Comparison & enqueueing                                            #
    # ------------------------------------------------------------------ #

    def _compare_and_record(self, item: QueueItem, captures: Both[Capture]) -> None:
        ref, new = captures.ref, captures.new
        if ref.status >= 400 and ref.status == new.status:
            self.log.info("[%s] same error code %d on both sides", ref.path, ref.status)
            self.result.record(item, ref.status, new.status)
            return

        artifacts = self.config.artifacts
        for capture in (ref, new):
            if artifacts.htmls:
                capture.write_html(self.role_dir, item)
            if artifacts.screenshots:
                capture.write_screenshot(self.role_dir, item)

        errors = ref.compare(new, self.config, role_dir=self.role_dir, item=item, logger=self.log)
        if ref.status != new.status:
            self.log.info("[%s] HTTP status differs: %d != %d", ref.path, ref.status, new.status)
            errors.append("HTTP status")
        self.result.record(item, ref.status, new.status, errors)

        # only what the reference shows is followed; new-only targets are new features
        if self.config.crawl.by_click.enabled:
            self.enqueue_clickables(ref, item, self.pair.discover_clickables())
        if self.config.crawl.by_link.enabled:
            self.enqueue_links(ref, item)
        if self.config.crawl.forms:
            self.handle_forms(item)

    def handle_forms(self, item: QueueItem) -> int:
        """Run the configured forms on both pages; returns how many were found on both sides.

        Form failures are logged and never cancel the visit.
        """
        handled = 0
        for selector, form in sorted(self.config.crawl.forms.items()):
            try:
                outcome = self.pair.handle_form(selector, form.submit_selector)
            except (SessionError, RemoteDriverError, WebDriverException) as exc:
                self.log.warning("#%d form %r failed: %s", item.visited, selector, exc)
                continue
            if outcome.ref.found and outcome.new.found:
                handled += 1
            if outcome.ref.applied != outcome.new.applied:
                self.log.warning(
                    "#%d form %r options differ: ref=%s new=%s",
                    item.visited, selector, list(outcome.ref.applied), list(outcome.new.applied),
                )
        return handled

    def _click_allowed(self, target: ClickTarget) -> bool:
        by_click = self.config.crawl.by_click
        if _denied(target.href, by_click.href_deny):
            self.log.debug("clickable href %r denied", target.href)
            return False
        if _denied(target.text, by_click.text_deny):
            self.log.debug("clickable text %r denied", target.text)
            return False
        if _denied(target.locator, by_click.locator_deny):
            self.log.debug("clickable locator %r denied", target.locator)
            return False
        return True

    def _push(self, candidate: QueueItem) -> bool:
        if candidate.signature() in self._dequeued:
            return False
        self.frontier.append(candidate)
        return True

    def enqueue_clickables(self, capture: Capture, item: QueueItem, targets: List[ClickTarget]) -> int:
        chain = item.chain_plus()
        count = 0
        for target in targets:
            if not self._click_allowed(target):
                continue
            if self._push(QueueItem.click(capture.signature, target, chain=chain)):
                count += 1
        self.log.debug("#%d enqueued %d clickable(s)", item.visited, count)
        return count

    def enqueue_links(self, capture: Capture, item: QueueItem) -> int:
        links = capture.extract_links(self.config)
        if not links:
            return 0
        chain = item.chain_plus()
        count = 0
        for url in links:
            candidate = QueueItem.link(path_query(url), origin=capture.signature, chain=chain, depth=item.depth + 1)
            if self._push(candidate):
                count += 1
        self.log.debug("#%d enqueued %d link(s)", item.visited, count)
        return count
