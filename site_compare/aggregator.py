# File: site_compare/aggregator.py
"""site_compare.aggregator: накопление результатов обхода одной роли и итоговая сводка."""

from __future__ import annotations

import json
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from site_compare.crawler.models import QueueItem


@dataclass(slots=True)
class VisitRecord:
    """Запись об одном посещённом месте."""

    item: QueueItem
    status_ref: int
    status_new: int
    compare: Optional[List[str]] = None

    @property
    def visited(self) -> int:
        return self.item.visited or 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "visited": self.visited,
            "place": self.item.to_dict(with_chain=False),
            "status": {"ref": self.status_ref, "new": self.status_new},
            "compare": self.compare,
        }


@dataclass(slots=True)
class Counters:
    visited: int = 0
    links: int = 0
    clicks: int = 0
    depth: int = 0  # deepest link level visited


@dataclass(slots=True)
class CrawlResult:
    """Результат обхода одной роли; изменяется только краулером."""

    role: str = ""
    role_dir: str = ""
    seen: Dict[str, VisitRecord] = field(default_factory=dict)
    by_status: Dict[int, List[VisitRecord]] = field(default_factory=lambda: defaultdict(list))
    errors: List[VisitRecord] = field(default_factory=list)
    cancelled: Dict[str, List[QueueItem]] = field(default_factory=lambda: defaultdict(list))
    unexpected: Dict[str, List[QueueItem]] = field(default_factory=lambda: defaultdict(list))
    counters: Counters = field(default_factory=Counters)
    stopped_reason: Optional[str] = None

    # -- mutation ---------------------------------------------------------------

    def record(self, item: QueueItem, status_ref: int, status_new: int, compare: Optional[List[str]] = None) -> VisitRecord:
        data = VisitRecord(item=item, status_ref=status_ref, status_new=status_new, compare=compare)
        self.seen[item.signature()] = data
        self.by_status[status_ref].append(data)
        if compare:
            self.errors.append(data)
        return data

    def cancel(self, item: QueueItem, reason: str) -> None:
        self.cancelled[reason].append(item)

    def mark_unexpected(self, item: QueueItem, reason: str) -> None:
        self.unexpected[reason].append(item)

    # -- views -------------------------------------------------------------------

    def error_reasons(self) -> Dict[str, List[int]]:
        reasons: Dict[str, List[int]] = defaultdict(list)
        for data in self.errors:
            for reason in data.compare or ():
                reasons[reason].append(data.visited)
        return {k: sorted(v) for k, v in sorted(reasons.items())}

    @staticmethod
    def _ordinals(items: Dict[str, List[QueueItem]]) -> Dict[str, List[int]]:
        return {reason: sorted(i.visited or 0 for i in lst) for reason, lst in sorted(items.items())}

    def summary_lines(self) -> List[str]:
        """Итоговая сводка: по ней можно найти каждый артефакт по номеру визита."""
        c = self.counters
        lines = [
            f"  output directory: {self.role_dir}",
            f"  visited places count: {c.visited}",
            f"  - by click: {c.clicks}",
            f"  - by link: {c.links}",
            "  count per HTTP status:",
        ]
        for status in sorted(self.by_status):
            lines.append(f"  - {status}: {len(self.by_status[status])}")
        cancelled = self._ordinals(self.cancelled)
        lines.append(f"  cancelled places reasons count: {len(cancelled)}")
        for reason, ordinals in cancelled.items():
            lines.append(f"  > {reason}: {len(ordinals)}")
            lines.append(f"    {ordinals}")
        reasons = self.error_reasons()
        lines.append(f"  differences total count: {len(self.errors)}")
        lines.append(f"  differences reasons count: {len(reasons)}")
        for reason, ordinals in reasons.items():
            lines.append(f"  - {reason}: count={len(ordinals)}")
            lines.append(f"    {ordinals}")
        unexpected = self._ordinals(self.unexpected)
        lines.append(f"  unexpected count: {len(unexpected)}")
        for reason, ordinals in unexpected.items():
            lines.append(f"  > {reason}: {len(ordinals)}")
            lines.append(f"    {ordinals}")
        if self.stopped_reason:
            lines.append(f"  stopped early: {self.stopped_reason}")
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "role_dir": self.role_dir,
            "counters": {
                "visited": self.counters.visited,
                "links": self.counters.links,
                "clicks": self.counters.clicks,
                "depth": self.counters.depth,
            },
            "status": {str(k): [r.visited for r in v] for k, v in sorted(self.by_status.items())},
            "errors": [r.to_dict() for r in self.errors],
            "error_reasons": self.error_reasons(),
            "cancelled": self._ordinals(self.cancelled),
            "unexpected": self._ordinals(self.unexpected),
            "stopped_reason": self.stopped_reason,
        }

    def json(self, *, pretty: bool = False) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2 if pretty else None)


def aggregate_results(results: List[CrawlResult]) -> Dict[str, Any]:
    """Собирает результаты всех ролей в один отчёт."""
    roles = [r.to_dict() for r in results]
    return {
        "roles": roles,
        "totals": {
            "visited": sum(r.counters.visited for r in results),
            "differences": sum(len(r.errors) for r in results),
            "cancelled": sum(len(v) for r in results for v in r.cancelled.values()),
        },
    }
