# File: site_compare/rpc/client.py
"""site_compare.rpc.client: отправка команд воркерам и ожидание ответов.

Каждый вызов открывает новое TCP-соединение, отправляет запрос, закрывает
запись (``SHUT_WR``) и читает ответ до строки ``OK``. :func:`execute`
рассылает одну команду нескольким воркерам и опрашивает их неблокирующие
сокеты по кругу, так что задержки двух воркеров перекрываются.
"""

from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, MutableMapping, Optional, Set, Tuple

from site_compare.config import RpcTimeouts
from site_compare.exceptions import RpcError
from site_compare.logger import get_logger
from site_compare.rpc.protocol import AnswerBuffer, Err, Replay, Result, decode_answer, encode_request

__all__ = ("WorkerClient", "ReplayHandler", "execute")

_READ_SIZE = 8192
_LOG_LIMIT = 256

# handler(name, command, args) -> True когда команду можно отправить повторно
ReplayHandler = Callable[[str, str, Dict[str, Any]], bool]


class WorkerClient:
    """Клиент одного воркера (одна сторона одной роли)."""

    def __init__(
        self,
        port: int,
        *,
        host: str = "localhost",
        name: str = "",
        timeouts: Optional[RpcTimeouts] = None,
        poll: float = 0.1,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.name = name or str(port)
        self.timeouts = timeouts or RpcTimeouts()
        self.poll = poll
        self.log = logger or get_logger("rpc")

    def __repr__(self) -> str:
        return f"WorkerClient({self.name!r}, {self.host}:{self.port})"

    def send_command(self, command: str, args: Optional[Dict[str, Any]] = None) -> socket.socket:
        """Подключается (с повторами в пределах ``send_command``) и отправляет запрос.

        Ответ не ожидается; возвращается сокет, из которого его читать.
        """
        payload = encode_request(command, args)
        if len(payload) > _LOG_LIMIT:
            self.log.debug("%s: sending %r with %d bytes", self.name, command, len(payload))
        else:
            self.log.debug("%s: sending %s", self.name, payload.decode("utf-8"))

        deadline = time.monotonic() + self.timeouts.send_command
        while True:
            try:
                sock = socket.create_connection((self.host, self.port), timeout=self.timeouts.send_command)
                break
            except OSError as exc:
                if time.monotonic() >= deadline:
                    raise RpcError(f"{self.name}: unable to connect to {self.host}:{self.port}: {exc}") from exc
                self.log.debug("%s: connect failed (%s), sleeping %.1fs", self.name, exc, self.poll)
                time.sleep(self.poll)
        try:
            sock.sendall(payload)
            sock.shutdown(socket.SHUT_WR)
        except OSError as exc:
            sock.close()
            raise RpcError(f"{self.name}: unable to send {command!r}: {exc}") from exc
        return sock

    def get_answer(self, sock: socket.socket, replay_kinds: Tuple[str, ...] = ()) -> Result:
        """Читает ответ до ``OK`` или до истечения ``get_answer``; сокет закрывается."""
        buffer = AnswerBuffer()
        deadline = time.monotonic() + self.timeouts.get_answer
        sock.settimeout(self.poll)
        try:
            while not buffer.ok:
                if time.monotonic() >= deadline:
                    self.log.error("%s: OK answer not received after %.1fs", self.name, self.timeouts.get_answer)
                    return Err("timeout")
                try:
                    chunk = sock.recv(_READ_SIZE)
                except socket.timeout:
                    continue
                except OSError as exc:
                    self.log.error("%s: read failed: %s", self.name, exc)
                    return Err("socket")
                if not chunk:
                    if not buffer.close():
                        return Err("socket")
                    break
                buffer.feed(chunk)
        finally:
            sock.close()
        return decode_answer(buffer.response, replay_kinds)

    def call(
        self,
        command: str,
        args: Optional[Dict[str, Any]] = None,
        handlers: Optional[Dict[str, ReplayHandler]] = None,
    ) -> Result:
        """Одиночный вызов с той же обработкой replay, что и у :func:`execute`."""
        if handlers:
            return execute(command, args, {self.name: self}, handlers)[self.name]
        try:
            sock = self.send_command(command, args)
        except RpcError as exc:
            self.log.error("%s", exc)
            return Err("socket")
        return self.get_answer(sock)


@dataclass(slots=True)
class _Pending:
    sock: socket.socket
    buffer: AnswerBuffer = field(default_factory=AnswerBuffer)
    replayed: Set[str] = field(default_factory=set)


def _read_nonblocking(sock: socket.socket) -> Tuple[bytes, bool]:
    """Returns ``(data, eof)`` without blocking."""
    try:
        chunk = sock.recv(_READ_SIZE)
    except BlockingIOError:
        return b"", False
    return chunk, not chunk


def _start(client: WorkerClient, command: str, args: Dict[str, Any]) -> _Pending:
    sock = client.send_command(command, args)
    sock.setblocking(False)
    return _Pending(sock=sock)


def execute(
    command: str,
    args: Optional[Dict[str, Any]],
    clients: MutableMapping[str, WorkerClient],
    handlers: Optional[Dict[str, ReplayHandler]] = None,
    *,
    timeout: Optional[float] = None,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Result]:
    """Отправляет *command* всем *clients* и ждёт все ответы.

    Ответ-строка, совпадающая с ключом *handlers*, считается запросом replay:
    вызывается обработчик (он может заменить клиента в *clients*), и команда
    отправляется повторно. Повтор того же токена в рамках одного вызова даёт
    ``Err("replay:<token>")``; отказ обработчика даёт ``Err("handler:<token>")``.
    """
    log = logger or get_logger("rpc")
    args = dict(args or {})
    handlers = handlers or {}
    kinds = tuple(handlers)
    results: Dict[str, Result] = {}
    pending: Dict[str, _Pending] = {}

    for name in sorted(clients):
        try:
            pending[name] = _start(clients[name], command, args)
        except RpcError as exc:
            log.error("%s", exc)
            results[name] = Err("socket")

    if timeout is None:
        timeout = min((c.timeouts.execute for c in clients.values()), default=RpcTimeouts().execute)
    poll = min((c.poll for c in clients.values()), default=0.1)
    started = time.monotonic()

    while pending:
        received = False
        for name in sorted(pending):
            state = pending[name]
            try:
                chunk, eof = _read_nonblocking(state.sock)
            except OSError as exc:
                log.error("%s: read failed: %s", name, exc)
                state.sock.close()
                results[name] = Err("socket")
                del pending[name]
                continue
            if chunk:
                received = True
                state.buffer.feed(chunk)
            if eof:
                state.buffer.close()

            if not state.buffer.ok:
                if eof:
                    log.error("%s: connection closed before OK", name)
                    results[name] = Err("socket")
                elif time.monotonic() - started > timeout:
                    log.error("%s: OK answer not received after %.1fs", name, timeout)
                    results[name] = Err("timeout")
                else:
                    continue
                state.sock.close()
                del pending[name]
                continue

            state.sock.close()
            result = decode_answer(state.buffer.response, kinds)
            if isinstance(result, Replay):
                kind = result.kind
                if kind in state.replayed:
                    log.error("%s: replay loop detected for %r", name, kind)
                    result = Err(f"replay:{kind}")
                else:
                    log.info("%s: got replay request %r for %s", name, kind, command)
                    state.replayed.add(kind)
                    if not handlers[kind](name, command, args):
                        result = Err(f"handler:{kind}")
                    else:
                        try:
                            restarted = _start(clients[name], command, {**args, "replayed": kind})
                        except RpcError as exc:
                            log.error("%s", exc)
                            result = Err("socket")
                        else:
                            restarted.replayed = state.replayed
                            pending[name] = restarted
                            continue
            elif isinstance(result, Err):
                log.error("%s: cannot decode answer to %s", name, command)
            else:
                log.debug("%s: %s answered after %.3fs", name, command, time.monotonic() - started)
            results[name] = result
            del pending[name]

        if pending and not received:
            time.sleep(poll)

    return results
