# File: site_compare/engine.py
"""site_compare.engine: Orchestration layer для запуска сравнения по ролям и записи отчёта."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Union

from site_compare.aggregator import CrawlResult
from site_compare.browser.session import BrowserSession
from site_compare.config import CompareConfig, RoleConfig, RunMode, load_config
from site_compare.context import Context
from site_compare.crawler.crawler import Crawler
from site_compare.crawler.pair import LocalPair, SessionPair
from site_compare.logger import logger
from site_compare.report.json_report import render_json
from site_compare.rpc.remote import RemotePair
from site_compare.rpc.server import Authenticator, Worker, WorkerServer

__all__ = ["Engine", "PairFactory", "start_compare", "run_worker"]

PairFactory = Callable[[Context], SessionPair]

REPORT_NAME = "report.json"


def default_pair(context: Context) -> SessionPair:
    """LocalPair для режима local, RemotePair для daemon."""
    if context.config.mode is RunMode.DAEMON:
        return RemotePair(context)
    return LocalPair(context)


class Engine:
    """Фасад для CLI и тестов: загрузка конфига, обход всех включённых ролей и отчёт."""

    @staticmethod
    def load_config(path: Optional[str]) -> CompareConfig:
        """Загружает конфиг из YAML/JSON."""
        return load_config(path)

    def __init__(
        self,
        config: CompareConfig,
        *,
        pair_factory: Optional[PairFactory] = None,
    ) -> None:
        self.config = config
        self.output_dir = Path(config.output_dir)
        self.pair_factory = pair_factory or default_pair

    def run_role(self, name: str, role: RoleConfig) -> Optional[CrawlResult]:
        """Обходит одну роль; None, если воркеры роли недоступны."""
        context = Context.for_role(self.config, name, self.output_dir)
        pair = self.pair_factory(context)
        try:
            if not pair.ready():
                logger.error("Role %r: sessions not ready, skipped", name)
                return None
            crawler = Crawler(context, role, pair)
            return crawler.run()
        finally:
            pair.close()

    def start_compare(self) -> List[CrawlResult]:
        roles = self.config.enabled_roles()
        if not roles:
            logger.warning("No enabled role to compare")
        logger.info("Comparing %s with %s (%d role(s))", self.config.bases.ref, self.config.bases.new, len(roles))
        results: List[CrawlResult] = []
        for name, role in roles.items():
            result = self.run_role(name, role)
            if result is not None:
                results.append(result)
        return results

    def write_report(self, results: List[CrawlResult], path: Union[str, Path, None] = None) -> Path:
        target = Path(path) if path is not None else self.output_dir / REPORT_NAME
        saved = render_json(results, target)
        logger.info("JSON report: %s", saved)
        return saved


def start_compare(config: CompareConfig) -> List[CrawlResult]:
    """Запускает сравнение по всем включённым ролям и пишет ``<output>/report.json``."""
    engine = Engine(config)
    results = engine.start_compare()
    engine.write_report(results)
    return results


def run_worker(
    config: CompareConfig,
    role_name: str,
    which: str,
    port: int,
    authenticator: Optional[Authenticator] = None,
) -> None:
    """Поднимает воркер с одной браузерной сессией и обслуживает запросы до прерывания."""
    context = Context.for_worker(config, role_name, which, port)
    session = BrowserSession.create(context, which)
    server = WorkerServer(Worker(context, session, authenticator), port)
    context.logger.info("worker %s:%s listening on port %d", role_name, which, server.port)
    try:
        server.serve_forever()
    finally:
        server.server_close()
        session.close()
