# site_compare/crawler/pair.py
"""
The pair of browser sessions a role crawls with.

The crawler talks to a :class:`SessionPair` and never to a browser
directly. :class:`LocalPair` drives two :class:`BrowserSession` objects in
the current thread; :class:`site_compare.rpc.remote.RemotePair` forwards
the same operations to two worker processes. In both cases the reference
action always runs before the mirrored action on the new site, and any
per-side failure surfaces as a :class:`SessionError` carrying a reason.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, Protocol, TypeVar

from site_compare.browser.session import BrowserSession
from site_compare.capture import Capture
from site_compare.context import Context
from site_compare.crawler.models import ClickTarget, FormOutcome, QueueItem
from site_compare.exceptions import ContractError, SessionError
from site_compare.rpc.server import RELOGIN, Authenticator, landed_on_login, reset_authenticator

__all__ = ("Both", "SessionPair", "LocalPair", "SIDES")

SIDES = ("ref", "new")

_T = TypeVar("_T")


@dataclass(frozen=True, slots=True)
class Both(Generic[_T]):
    ref: _T
    new: _T

    def __getitem__(self, which: str) -> _T:
        if which == "ref":
            return self.ref
        if which == "new":
            return self.new
        raise ContractError(f"unknown side {which!r}")


class SessionPair(Protocol):
    def navigate_and_capture(self, path: str) -> Both[Capture]: ...

    def click_and_capture(self, item: QueueItem) -> Both[Capture]: ...

    def replay_hop(self, hop: QueueItem) -> Both[bytes]: ...

    def signature(self, which: str = "ref") -> str: ...

    def discover_clickables(self) -> List[ClickTarget]: ...

    def handle_form(self, selector: str, submit_selector: Optional[str] = None) -> Both[FormOutcome]: ...

    def ready(self) -> bool: ...

    def close(self) -> None: ...


class LocalPair:
    """Both browsers in-process, driven sequentially: ref first, then new."""

    def __init__(
        self,
        context: Context,
        sessions: Optional[Dict[str, BrowserSession]] = None,
        authenticator: Optional[Authenticator] = None,
    ) -> None:
        self.context = context
        self.log = context.child("pair").logger
        self.sessions = sessions if sessions is not None else {w: BrowserSession.create(context, w) for w in SIDES}
        missing = [w for w in SIDES if w not in self.sessions]
        if missing:
            raise ContractError(f"missing session(s): {', '.join(missing)}")
        self.authenticator = authenticator or reset_authenticator

    def _captured(self, which: str, action: Callable[[BrowserSession], Capture]) -> Capture:
        session = self.sessions[which]
        capture = action(session)
        if not landed_on_login(self.context, capture):
            return capture
        self.log.info("%s: landed on login page %s, trying to relogin", which, capture.final_url)
        if not self.authenticator(session):
            raise SessionError(f"{which}: relogin failed", reason=f"handler:{RELOGIN}")
        capture = action(session)
        if landed_on_login(self.context, capture):
            raise SessionError(f"{which}: still on login page after relogin", reason=f"replay:{RELOGIN}")
        return capture

    def navigate_and_capture(self, path: str) -> Both[Capture]:
        ref = self._captured("ref", lambda s: s.navigate_and_capture(path))
        new = self._captured("new", lambda s: s.navigate_and_capture(path))
        return Both(ref, new)

    def click_and_capture(self, item: QueueItem) -> Both[Capture]:
        if item.target is None:
            raise ContractError(f"{item.signature()} has no click target")
        target = item.target
        ref = self._captured("ref", lambda s: s.click_and_capture(target))
        new = self._captured("new", lambda s: s.click_and_capture(target, allow_equivalent=True))
        return Both(ref, new)

    def replay_hop(self, hop: QueueItem) -> Both[bytes]:
        ref = self.sessions["ref"].replay_hop(hop)
        new = self.sessions["new"].replay_hop(hop, allow_equivalent=True)
        return Both(ref, new)

    def signature(self, which: str = "ref") -> str:
        return self.sessions[which].signature()

    def discover_clickables(self) -> List[ClickTarget]:
        return self.sessions["ref"].discover_clickables()

    def handle_form(self, selector: str, submit_selector: Optional[str] = None) -> Both[FormOutcome]:
        ref = self.sessions["ref"].handle_form(selector, submit_selector)
        new = self.sessions["new"].handle_form(selector, submit_selector)
        return Both(ref, new)

    def ready(self) -> bool:
        return True

    def close(self) -> None:
        for which in SIDES:
            self.sessions[which].close()
