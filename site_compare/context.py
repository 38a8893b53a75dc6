"""site_compare.context: explicit execution context handed to every component.

A :class:`Context` bundles the validated configuration, the logger and the
*node* the code runs on. The node is a tagged variant:

* :class:`InProcess` – the role drives both browsers itself;
* :class:`Daemon` – a worker process owning exactly one browser, reached
  over the socket RPC.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Union

from site_compare.config import CompareConfig
from site_compare.logger import get_logger

__all__ = ("CallOrigin", "InProcess", "Daemon", "Node", "Context")


class CallOrigin(str, Enum):
    IN_PROCESS = "in_process"
    DAEMON = "daemon"


@dataclass(frozen=True, slots=True)
class InProcess:
    role_name: str
    role_dir: Path
    origin: CallOrigin = field(default=CallOrigin.IN_PROCESS, init=False)


@dataclass(frozen=True, slots=True)
class Daemon:
    role_name: str
    role_dir: Path
    which: str
    port: int
    origin: CallOrigin = field(default=CallOrigin.DAEMON, init=False)


Node = Union[InProcess, Daemon]


@dataclass(frozen=True, slots=True)
class Context:
    config: CompareConfig
    node: Node
    logger: logging.Logger = field(default_factory=get_logger)

    @property
    def role_name(self) -> str:
        return self.node.role_name

    @property
    def role_dir(self) -> Path:
        return self.node.role_dir

    @property
    def is_daemon(self) -> bool:
        return self.node.origin is CallOrigin.DAEMON

    def child(self, suffix: str) -> Context:
        """Same context with a child logger (``SiteCompare.<suffix>``)."""
        return replace(self, logger=get_logger(suffix))

    @classmethod
    def for_role(cls, config: CompareConfig, role_name: str, output_dir: Path | str | None = None) -> Context:
        root = Path(output_dir if output_dir is not None else config.output_dir)
        return cls(config=config, node=InProcess(role_name=role_name, role_dir=root / role_name))

    @classmethod
    def for_worker(
        cls,
        config: CompareConfig,
        role_name: str,
        which: str,
        port: int,
        output_dir: Path | str | None = None,
    ) -> Context:
        root = Path(output_dir if output_dir is not None else config.output_dir)
        node = Daemon(role_name=role_name, role_dir=root / role_name, which=which, port=port)
        return cls(config=config, node=node, logger=get_logger(f"worker.{which}"))
