# File: site_compare/rpc/protocol.py
"""site_compare.rpc.protocol: формат обмена между ролью и воркером.

Запрос: одна строка ``"<command> <json>"``. Ответ: строки с JSON-фрагментами
(каждая может начинаться с ``<pid> ``) и завершающая строка ``OK``.
Одно TCP-соединение на один цикл запрос/ответ.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from site_compare.exceptions import ContractError, RpcError

__all__ = (
    "Ok",
    "Replay",
    "Err",
    "Result",
    "OK_LINE",
    "encode_request",
    "parse_request",
    "frame_answer",
    "AnswerBuffer",
    "decode_answer",
)

OK_LINE = "OK"
_PID_PREFIX_RE = re.compile(r"^[0-9]+\s+")
_LINE_SPLIT_RE = re.compile(r"[\r\n]+")


@dataclass(frozen=True, slots=True)
class Ok:
    value: Any = None


@dataclass(frozen=True, slots=True)
class Replay:
    kind: str


@dataclass(frozen=True, slots=True)
class Err:
    reason: str


Result = Union[Ok, Replay, Err]


def encode_request(command: str, args: Optional[Dict[str, Any]] = None) -> bytes:
    if not command or any(c.isspace() for c in command):
        raise ContractError(f"invalid command name {command!r}")
    return f"{command} {json.dumps(args or {}, ensure_ascii=False)}".encode("utf-8")


def parse_request(raw: bytes) -> Tuple[str, Dict[str, Any]]:
    """Разбирает ``"<command> <json>"``; аргументы могут отсутствовать."""
    text = raw.decode("utf-8").strip()
    if not text:
        raise RpcError("empty request")
    command, _, payload = text.partition(" ")
    if not payload.strip():
        return command, {}
    try:
        args = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise RpcError(f"bad arguments for {command}: {exc}") from exc
    if not isinstance(args, dict):
        raise RpcError(f"arguments for {command} must be an object")
    return command, args


def frame_answer(payload: Any, pid: Optional[int] = None) -> bytes:
    """``{"answer": payload}`` plus the terminal ``OK`` line; ``None`` gives a bare ack."""
    prefix = f"{pid} " if pid is not None else ""
    lines: List[str] = []
    if payload is not None:
        lines.append(prefix + json.dumps({"answer": payload}, ensure_ascii=False))
    lines.append(prefix + OK_LINE)
    return ("\n".join(lines) + "\n").encode("utf-8")


class AnswerBuffer:
    """Собирает фрагменты ответа, пока не придёт строка ``OK``."""

    def __init__(self) -> None:
        self._pending = ""
        self.response = ""
        self.ok = False

    def feed(self, chunk: bytes) -> bool:
        """Добавляет прочитанные байты; возвращает True, когда ответ завершён."""
        self._pending += chunk.decode("utf-8", errors="replace")
        *complete, self._pending = _LINE_SPLIT_RE.split(self._pending)
        for line in complete:
            self._line(line)
        return self.ok

    def close(self) -> bool:
        """Конец потока: последняя строка может прийти без перевода строки."""
        if self._pending:
            self._line(self._pending)
            self._pending = ""
        return self.ok

    def _line(self, line: str) -> None:
        line = _PID_PREFIX_RE.sub("", line.strip())
        if not line:
            return
        if line == OK_LINE:
            self.ok = True
        else:
            self.response += line


def decode_answer(response: str, replay_kinds: Iterable[str] = ()) -> Result:
    """Ok(answer) или Replay(kind), если ответ – строка из известных токенов."""
    if not response:
        return Ok(True)
    try:
        data = json.loads(response)
    except json.JSONDecodeError:
        return Err("decode")
    if not isinstance(data, dict):
        return Err("decode")
    answer = data.get("answer")
    if isinstance(answer, str) and answer in set(replay_kinds):
        return Replay(answer)
    return Ok(answer)
