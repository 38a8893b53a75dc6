"""site_compare.capture: снимок одного визита и его сравнение с парным снимком.

:class:`Capture` неизменяем после создания. Он сериализуется в словарь
(скриншот в base64), чтобы пересекать границу RPC между воркером и ролью.
"""

from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from site_compare.browser.signature import signature_frame_parts, signature_path
from site_compare.config import CompareConfig
from site_compare.crawler.link_extractor import extract_links
from site_compare.crawler.models import QueueItem
from site_compare.exceptions import ContractError
from site_compare.imagediff import scaled_threshold, threshold_count, within_threshold
from site_compare.logger import get_logger

__all__ = ("Capture", "artifact_name", "write_screenshot")

_UNSAFE_RE = re.compile(r'[/|:"*]')


def artifact_name(
    which: str,
    item: QueueItem,
    signature: str,
    extension: str,
    *,
    counter: Optional[int] = None,
    suffix: str = "",
) -> str:
    """``NNNNNN_<which>_<path|frames|locator>[_suffix]<ext>`` with unsafe chars as ``_``."""
    number = counter if counter is not None else (item.visited or 0)
    name = "|".join([signature_path(signature), *signature_frame_parts(signature), item.locator or ""])
    tail = f"_{suffix}" if suffix else ""
    return _UNSAFE_RE.sub("_", f"{number:06d}_{which}_{name}{tail}{extension}")


def write_screenshot(
    png: bytes,
    role_dir: Path,
    which: str,
    item: QueueItem,
    signature: str,
    *,
    counter: Optional[int] = None,
    suffix: str = "",
) -> Path:
    target_dir = Path(role_dir) / which / "screenshots"
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / artifact_name(which, item, signature, ".png", counter=counter, suffix=suffix)
    path.write_bytes(png)
    return path


@dataclass(frozen=True, slots=True)
class Capture:
    """Неизменяемый снимок страницы на одной стороне (ref или new)."""

    which: str
    html: str
    dom_hash: str
    status: int
    content_type: str
    final_url: str
    signature: str
    response_url: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    alerts: Tuple[str, ...] = ()
    screenshot: Optional[bytes] = None

    # -- derived ---------------------------------------------------------------

    @property
    def path(self) -> str:
        return signature_path(self.signature)

    def extract_links(self, config: CompareConfig) -> List[str]:
        """Исходящие ссылки, разрешённые конфигом (только по ref-снимку)."""
        base = config.base_url(self.which)
        return extract_links(
            self.html,
            base,
            config.crawl.by_link,
            same_host_only=config.crawl.same_host,
            page_url=self.final_url or None,
        )

    # -- persistence -------------------------------------------------------------

    def write_html(self, role_dir: Path, item: QueueItem, *, suffix: str = "") -> Path:
        target_dir = Path(role_dir) / self.which / "htmls"
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / artifact_name(self.which, item, self.signature, ".html", suffix=suffix)
        path.write_text(self.html, encoding="utf-8")
        return path

    def write_screenshot(self, role_dir: Path, item: QueueItem, *, suffix: str = "") -> Optional[Path]:
        if not self.screenshot:
            return None
        return write_screenshot(self.screenshot, role_dir, self.which, item, self.signature, suffix=suffix)

    def _write_diffs(self, other: Capture, role_dir: Path, item: QueueItem) -> List[Path]:
        diffs_dir = Path(role_dir) / "diffs"
        diffs_dir.mkdir(parents=True, exist_ok=True)
        written = []
        for capture in (self, other):
            if not capture.screenshot:
                continue
            path = diffs_dir / artifact_name(capture.which, item, capture.signature, ".png")
            path.write_bytes(capture.screenshot)
            written.append(path)
        return written

    # -- comparison ----------------------------------------------------------------

    def compare(
        self,
        other: Capture,
        config: CompareConfig,
        *,
        role_dir: Optional[Path] = None,
        item: Optional[QueueItem] = None,
        logger: Optional[logging.Logger] = None,
    ) -> List[str]:
        """Список причин расхождения; пустой список означает совпадение.

        Все проверки выполняются независимо друг от друга.
        """
        log = logger or get_logger()
        errors: List[str] = []
        where = f"[{self.path}]"

        if config.compare.htmls.enabled:
            if (self.content_type or "").lower() != (other.content_type or "").lower():
                log.info("%s content-type differs: %r != %r", where, self.content_type, other.content_type)
                errors.append("content-type")
            if self.dom_hash != other.dom_hash:
                log.info("%s sanitized DOM hashes differ: %s != %s", where, self.dom_hash, other.dom_hash)
                errors.append("DOM hash")

        if self.alerts:
            errors.append("ref alerts: " + " | ".join(self.alerts))
        if other.alerts:
            errors.append("new alerts: " + " | ".join(other.alerts))

        shots = config.compare.screenshots
        if shots.enabled:
            if not self.screenshot or not other.screenshot:
                raise ContractError(f"{where} visual comparison requested without screenshots")
            count = threshold_count(self.screenshot, other.screenshot, scaled_threshold(shots.rmse_threshold))
            if within_threshold(count, shots.threshold_count):
                log.debug("%s screenshots threshold_count %d <= %d", where, count, shots.threshold_count)
            else:
                log.info("%s screenshots threshold_count %d > %d", where, count, shots.threshold_count)
                errors.append("screenshot_threshold_count")
                if role_dir is not None and item is not None:
                    self._write_diffs(other, role_dir, item)

        return errors

    # -- serialisation ---------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "which": self.which,
            "html": self.html,
            "dom_hash": self.dom_hash,
            "status": self.status,
            "content_type": self.content_type,
            "final_url": self.final_url,
            "response_url": self.response_url,
            "signature": self.signature,
            "headers": dict(self.headers),
            "alerts": list(self.alerts),
            "screenshot": base64.b64encode(self.screenshot).decode("ascii") if self.screenshot else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Capture:
        missing = [k for k in ("which", "dom_hash", "status", "signature") if k not in data]
        if missing:
            raise ContractError(f"capture payload misses {', '.join(missing)}")
        shot = data.get("screenshot")
        return cls(
            which=str(data["which"]),
            html=str(data.get("html") or ""),
            dom_hash=str(data["dom_hash"]),
            status=int(data["status"]),
            content_type=str(data.get("content_type") or ""),
            final_url=str(data.get("final_url") or ""),
            signature=str(data["signature"]),
            response_url=str(data.get("response_url") or ""),
            headers=dict(data.get("headers") or {}),
            alerts=tuple(data.get("alerts") or ()),
            screenshot=base64.b64decode(shot) if shot else None,
        )
