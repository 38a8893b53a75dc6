# site_compare/crawler/models.py
"""
Data models for the SiteCompare crawler.

A :class:`QueueItem` is one navigation step, either by link (a path to
navigate to) or by click (an origin signature plus an element locator). It
carries the immutable chain of ancestor steps needed to reach it from an
entry route, so any click target can be reproduced on a fresh browser.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from site_compare.exceptions import ContractError

__all__ = ("CrawlKind", "ClickTarget", "FormOutcome", "QueueItem")


class CrawlKind(str, Enum):
    LINK = "link"
    CLICK = "click"


@dataclass(frozen=True, slots=True)
class ClickTarget:
    """A clickable element found on a page, as returned by the discovery script."""

    locator: str
    text: str = ""
    href: str = ""
    kind: str = "other"
    onclick: str = ""
    doc_key: str = "top"
    frame_src: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ClickTarget:
        locator = data.get("locator") or data.get("xpath")
        if not locator:
            raise ContractError(f"clickable without locator: {dict(data)!r}")
        return cls(
            locator=str(locator),
            text=str(data.get("text") or ""),
            href=str(data.get("href") or ""),
            kind=str(data.get("kind") or "other"),
            onclick=str(data.get("onclick") or ""),
            doc_key=str(data.get("doc_key") or data.get("docKey") or "top"),
            frame_src=str(data.get("frame_src") or data.get("frameSrc") or ""),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "locator": self.locator,
            "text": self.text,
            "href": self.href,
            "kind": self.kind,
            "onclick": self.onclick,
            "doc_key": self.doc_key,
            "frame_src": self.frame_src,
        }


@dataclass(frozen=True, slots=True)
class FormOutcome:
    """What happened to one configured form on the current page."""

    selector: str
    found: bool = False
    applied: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FormOutcome:
        if not data.get("selector"):
            raise ContractError(f"form outcome without selector: {dict(data)!r}")
        return cls(
            selector=str(data["selector"]),
            found=bool(data.get("found")),
            applied=tuple(str(v) for v in data.get("applied") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"selector": self.selector, "found": self.found, "applied": list(self.applied)}


@dataclass(slots=True, eq=False)
class QueueItem:
    """One pending (or historical) crawl step.

    ``visited`` is stamped exactly once, when the crawler dequeues the item;
    ``destination`` is the signature the step lands on, known only for
    entry links once they have been resolved.
    """

    kind: CrawlKind
    path: Optional[str] = None
    origin: Optional[str] = None
    target: Optional[ClickTarget] = None
    chain: Tuple[QueueItem, ...] = ()
    depth: int = 0
    visited: Optional[int] = None
    destination: Optional[str] = None

    # -- constructors ---------------------------------------------------------

    @classmethod
    def link(
        cls,
        path: str,
        *,
        origin: Optional[str] = None,
        chain: Sequence[QueueItem] = (),
        depth: int = 0,
    ) -> QueueItem:
        if not path:
            raise ContractError("link item without path")
        return cls(kind=CrawlKind.LINK, path=path, origin=origin, chain=tuple(chain), depth=depth)

    @classmethod
    def click(cls, origin: str, target: ClickTarget, *, chain: Sequence[QueueItem] = ()) -> QueueItem:
        if not origin:
            raise ContractError("click item without origin signature")
        return cls(kind=CrawlKind.CLICK, origin=origin, target=target, chain=tuple(chain))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> QueueItem:
        try:
            kind = CrawlKind(data.get("kind") or data.get("from") or CrawlKind.LINK.value)
        except ValueError as exc:
            raise ContractError(f"unknown queue item kind in {dict(data)!r}") from exc
        chain = tuple(cls.from_dict(hop) for hop in data.get("chain") or ())
        target = None
        if kind is CrawlKind.CLICK:
            raw_target = data.get("target") or data
            target = ClickTarget.from_dict(raw_target)
            if not data.get("origin"):
                raise ContractError(f"click item without origin: {dict(data)!r}")
        elif not data.get("path"):
            raise ContractError(f"link item without path: {dict(data)!r}")
        return cls(
            kind=kind,
            path=data.get("path"),
            origin=data.get("origin"),
            target=target,
            chain=chain,
            depth=int(data.get("depth") or 0),
            visited=data.get("visited"),
            destination=data.get("destination"),
        )

    @classmethod
    def from_chain(cls, hops: Sequence[Mapping[str, Any]]) -> QueueItem:
        """Build an item from a configured chain: the last hop is the target."""
        if not hops:
            raise ContractError("empty chain")
        items = [cls.from_dict({k: v for k, v in hop.items() if k != "chain"}) for hop in hops]
        target = items[-1]
        target.chain = tuple(items[:-1])
        return target

    # -- identity -------------------------------------------------------------

    @property
    def is_click(self) -> bool:
        return self.kind is CrawlKind.CLICK

    @property
    def is_link(self) -> bool:
        return self.kind is CrawlKind.LINK

    @property
    def locator(self) -> Optional[str]:
        return self.target.locator if self.target else None

    def signature(self) -> str:
        """Dedup key: ``link|<path>`` or ``click|<origin>|<locator>``."""
        if self.is_click:
            return f"click|{self.origin}|{self.locator}"
        return f"link|{self.path}"

    # -- chain ----------------------------------------------------------------

    def without_chain(self) -> QueueItem:
        return replace(self, chain=())

    def chain_plus(self) -> Tuple[QueueItem, ...]:
        """Ancestors of a child of this item: our chain followed by ourselves."""
        return self.chain + (self.without_chain(),)

    def chain_signatures(self) -> List[str]:
        return [hop.signature() for hop in self.chain]

    def stamp(self, ordinal: int) -> None:
        if self.visited is not None:
            raise ContractError(f"{self.signature()} already visited as #{self.visited}")
        self.visited = ordinal

    # -- serialisation ---------------------------------------------------------

    def to_dict(self, *, with_chain: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind.value, "depth": self.depth}
        if self.path is not None:
            data["path"] = self.path
        if self.origin is not None:
            data["origin"] = self.origin
        if self.target is not None:
            data["target"] = self.target.to_dict()
        if self.visited is not None:
            data["visited"] = self.visited
        if self.destination is not None:
            data["destination"] = self.destination
        if with_chain:
            data["chain"] = [hop.to_dict(with_chain=False) for hop in self.chain]
        return data

    def describe(self) -> str:
        if self.is_click and self.target is not None:
            return f"click {self.locator} ({self.target.text[:40]!r})"
        return f"link {self.path}"
