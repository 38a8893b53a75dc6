# File: site_compare/rpc/server.py
"""site_compare.rpc.server: воркер, владеющий одной браузерной сессией.

Роль в режиме ``daemon`` общается с двумя такими воркерами (``ref`` и
``new``) через :mod:`site_compare.rpc.client`. Запросы обрабатываются
строго последовательно: у воркера один браузер.
"""

from __future__ import annotations

import base64
import os
import socketserver
from typing import Any, Callable, Dict, Optional

from selenium.common.exceptions import WebDriverException

from site_compare.browser.session import BrowserSession
from site_compare.capture import Capture
from site_compare.context import Context
from site_compare.crawler.models import ClickTarget, QueueItem
from site_compare.exceptions import CompareError, ContractError, RpcError, SessionError
from site_compare.rpc.protocol import frame_answer, parse_request

__all__ = ("Authenticator", "RELOGIN", "UNEXPECTED", "Worker", "WorkerServer", "reset_authenticator")

RELOGIN = "relogin"
UNEXPECTED = "unexpected"

# Хук входа на сайт: получает сессию, возвращает True при успехе.
Authenticator = Callable[[BrowserSession], bool]


def reset_authenticator(session: BrowserSession) -> bool:
    """Аутентификатор по умолчанию: очистить хранилище и перезагрузить ``/``."""
    session.reset("/")
    return True


def landed_on_login(context: Context, capture: Capture) -> bool:
    role = context.config.roles.get(context.role_name)
    pattern = role.login_pattern if role is not None else None
    return bool(pattern and pattern.search(capture.final_url))


class Worker:
    """Таблица команд воркера поверх :class:`BrowserSession`."""

    def __init__(
        self,
        context: Context,
        session: BrowserSession,
        authenticator: Optional[Authenticator] = None,
    ) -> None:
        self.context = context
        self.session = session
        self.authenticator = authenticator or reset_authenticator
        self.log = context.logger
        self.commands: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "internal_status": self.internal_status,
            "ping": self.ping,
            "signature": self.signature,
            "navigate_and_capture": self.navigate_and_capture,
            "click_and_capture": self.click_and_capture,
            "replay_hop": self.replay_hop,
            "discover_clickables": self.discover_clickables,
            "handle_form": self.handle_form,
            "relogin": self.relogin,
            "stats": self.stats,
        }

    def handle(self, command: str, args: Dict[str, Any]) -> Any:
        """Выполняет команду; ошибки сессии и драйвера возвращаются как ``{"error": reason}``."""
        method = self.commands.get(command)
        if method is None:
            raise RpcError(f"unknown command {command!r}")
        try:
            return method(args)
        except SessionError as exc:
            self.log.warning("%s failed: %s", command, exc)
            return {"error": exc.reason, "message": str(exc)}
        except WebDriverException as exc:
            self.log.exception("%s: unexpected driver error", command)
            return {"error": UNEXPECTED, "exception": type(exc).__name__, "message": str(exc)}

    # -- commands -------------------------------------------------------------

    def internal_status(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "role": self.context.role_name,
            "which": self.session.which,
            "pid": os.getpid(),
            "base_url": self.session.base_url,
        }

    def ping(self, args: Dict[str, Any]) -> str:
        return "pong"

    def signature(self, args: Dict[str, Any]) -> str:
        return self.session.signature()

    def _captured(self, capture: Capture, args: Dict[str, Any]) -> Any:
        if landed_on_login(self.context, capture):
            self.log.info("landed on login page %s (replayed=%s)", capture.final_url, args.get("replayed"))
            return RELOGIN
        return capture.to_dict()

    def navigate_and_capture(self, args: Dict[str, Any]) -> Any:
        path = args.get("path")
        if not path:
            raise ContractError("navigate_and_capture without path")
        return self._captured(self.session.navigate_and_capture(path), args)

    def click_and_capture(self, args: Dict[str, Any]) -> Any:
        if not args.get("target"):
            raise ContractError("click_and_capture without target")
        target = ClickTarget.from_dict(args["target"])
        capture = self.session.click_and_capture(target, allow_equivalent=bool(args.get("allow_equivalent")))
        return self._captured(capture, args)

    def replay_hop(self, args: Dict[str, Any]) -> Dict[str, Any]:
        if not args.get("hop"):
            raise ContractError("replay_hop without hop")
        hop = QueueItem.from_dict(args["hop"])
        png = self.session.replay_hop(hop, allow_equivalent=bool(args.get("allow_equivalent")))
        return {"screenshot": base64.b64encode(png).decode("ascii") if png else None}

    def discover_clickables(self, args: Dict[str, Any]) -> list:
        return [target.to_dict() for target in self.session.discover_clickables()]

    def handle_form(self, args: Dict[str, Any]) -> Dict[str, Any]:
        if not args.get("selector"):
            raise ContractError("handle_form without selector")
        return self.session.handle_form(args["selector"], args.get("submit_selector")).to_dict()

    def relogin(self, args: Dict[str, Any]) -> bool:
        self.log.info("relogin requested")
        return bool(self.authenticator(self.session))

    def stats(self, args: Dict[str, Any]) -> Dict[str, int]:
        return dict(self.session.stats)


class _RequestHandler(socketserver.StreamRequestHandler):
    server: WorkerServer

    def handle(self) -> None:
        raw = self.rfile.read()
        worker = self.server.worker
        try:
            command, args = parse_request(raw)
            worker.log.debug("received %s", command)
            payload = worker.handle(command, args)
        except RpcError as exc:
            worker.log.error("bad request: %s", exc)
            payload = {"error": "request", "message": str(exc)}
        except CompareError as exc:
            # the role re-raises "contract" answers as ContractError
            worker.log.exception("command failed")
            payload = {"error": "contract", "message": str(exc)}
        self.wfile.write(frame_answer(payload, pid=os.getpid()))


class WorkerServer(socketserver.TCPServer):
    """TCP-сервер на localhost; один запрос за раз."""

    allow_reuse_address = True

    def __init__(self, worker: Worker, port: int, host: str = "localhost") -> None:
        self.worker = worker
        super().__init__((host, port), _RequestHandler)

    @property
    def port(self) -> int:
        return self.server_address[1]
