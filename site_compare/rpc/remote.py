# File: site_compare/rpc/remote.py
"""site_compare.rpc.remote: пара сессий поверх двух воркеров.

Тот же интерфейс, что у :class:`site_compare.crawler.pair.LocalPair`, но каждая
операция – широковещательный вызов :func:`site_compare.rpc.client.execute`.
"""

from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional

from site_compare.capture import Capture
from site_compare.context import Context
from site_compare.crawler.models import ClickTarget, FormOutcome, QueueItem
from site_compare.crawler.pair import SIDES, Both
from site_compare.exceptions import ContractError, RemoteDriverError, SessionError
from site_compare.rpc.client import ReplayHandler, WorkerClient, execute
from site_compare.rpc.protocol import Err, Ok, Result
from site_compare.rpc.server import RELOGIN, UNEXPECTED

__all__ = ("RemotePair",)


class RemotePair:
    """Пара воркеров ``ref``/``new`` одной роли."""

    def __init__(self, context: Context, clients: Optional[Dict[str, WorkerClient]] = None) -> None:
        self.context = context
        self.log = context.child("remote").logger
        if clients is None:
            role = context.config.roles[context.role_name]
            if role.workers is None:
                raise ContractError(f"role {context.role_name!r} has no workers configured")
            timeouts = context.config.browser.timeouts
            clients = {
                "ref": WorkerClient(role.workers.ref, name="ref", timeouts=timeouts, logger=self.log),
                "new": WorkerClient(role.workers.new, name="new", timeouts=timeouts, logger=self.log),
            }
        self.clients = clients
        self.handlers: Dict[str, ReplayHandler] = {RELOGIN: self._relogin}

    def _relogin(self, name: str, command: str, args: Dict[str, Any]) -> bool:
        result = self.clients[name].call("relogin")
        self.log.info("%s: relogin before replaying %s -> %s", name, command, result)
        return isinstance(result, Ok) and bool(result.value)

    @staticmethod
    def _unwrap(which: str, command: str, result: Result) -> Any:
        if isinstance(result, Err):
            raise SessionError(f"{which}: {command} failed ({result.reason})", reason=result.reason)
        if not isinstance(result, Ok):
            raise ContractError(f"{which}: unhandled result {result!r} for {command}")
        value = result.value
        if isinstance(value, dict) and "error" in value:
            if value["error"] == "contract":
                raise ContractError(f"{which}: {value.get('message')}")
            if value["error"] == UNEXPECTED:
                name = str(value.get("exception") or UNEXPECTED)
                raise RemoteDriverError(f"{which}: {value.get('message')}", name=name)
            raise SessionError(f"{which}: {value.get('message')}", reason=str(value["error"]))
        return value

    def _broadcast(self, command: str, args: Optional[Dict[str, Any]] = None) -> Both[Any]:
        results = execute(command, args, self.clients, self.handlers, logger=self.log)
        # ref first, so a failure on both sides reports the reference reason
        values = {which: self._unwrap(which, command, results[which]) for which in SIDES}
        return Both(values["ref"], values["new"])

    def _single(self, which: str, command: str, args: Optional[Dict[str, Any]] = None) -> Any:
        return self._unwrap(which, command, self.clients[which].call(command, args, self.handlers))

    def navigate_and_capture(self, path: str) -> Both[Capture]:
        both = self._broadcast("navigate_and_capture", {"path": path})
        return Both(Capture.from_dict(both.ref), Capture.from_dict(both.new))

    def click_and_capture(self, item: QueueItem) -> Both[Capture]:
        if item.target is None:
            raise ContractError(f"{item.signature()} has no click target")
        target = item.target.to_dict()
        ref = self._single("ref", "click_and_capture", {"target": target})
        new = self._single("new", "click_and_capture", {"target": target, "allow_equivalent": True})
        return Both(Capture.from_dict(ref), Capture.from_dict(new))

    def replay_hop(self, hop: QueueItem) -> Both[bytes]:
        data = hop.to_dict(with_chain=False)
        ref = self._single("ref", "replay_hop", {"hop": data})
        new = self._single("new", "replay_hop", {"hop": data, "allow_equivalent": True})
        return Both(*(base64.b64decode(v.get("screenshot") or b"") for v in (ref, new)))

    def signature(self, which: str = "ref") -> str:
        return str(self._single(which, "signature"))

    def discover_clickables(self) -> List[ClickTarget]:
        raw = self._single("ref", "discover_clickables") or []
        return [ClickTarget.from_dict(entry) for entry in raw]

    def handle_form(self, selector: str, submit_selector: Optional[str] = None) -> Both[FormOutcome]:
        both = self._broadcast("handle_form", {"selector": selector, "submit_selector": submit_selector})
        return Both(FormOutcome.from_dict(both.ref), FormOutcome.from_dict(both.new))

    def status(self) -> Both[Any]:
        return self._broadcast("internal_status")

    def ready(self) -> bool:
        """Оба воркера отвечают на ``internal_status``."""
        try:
            self.status()
        except SessionError as exc:
            self.log.error("workers not ready (%s)", exc.reason)
            return False
        return True

    def stats(self) -> Both[Any]:
        return self._broadcast("stats")

    def close(self) -> None:
        """Воркеры живут дольше роли: закрывать нечего."""
