"""
Модуль для загрузки и валидации конфигурации сравнения SiteCompare.
Используется Pydantic для описания схемы и проверки данных.

Регулярные выражения компилируются один раз при загрузке: неверные шаблоны
логируются и пропускаются. Значения, зависящие от ОС (строка, список или
словарь ``{os: value}``), приводятся к одному виду также при загрузке.
"""
from __future__ import annotations

import errno
import json
import os
import re
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from site_compare.logger import logger

__all__ = (
    "Single",
    "ValueList",
    "ByOs",
    "OsValue",
    "parse_os_value",
    "resolve_os_value",
    "compile_patterns",
    "CompareConfig",
    "FormConfig",
    "RoleConfig",
    "RunOverrides",
    "RunMode",
    "load_config",
)


# --------------------------------------------------------------------------- #
# OS-dependent values                                                         #
# --------------------------------------------------------------------------- #


@dataclass(frozen=True, slots=True)
class Single:
    value: str


@dataclass(frozen=True, slots=True)
class ValueList:
    values: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ByOs:
    """Значение по платформе: ключи сравниваются с началом ``sys.platform``."""

    values: Mapping[str, Union[str, List[str]]]


OsValue = Union[Single, ValueList, ByOs]


def parse_os_value(raw: Any) -> OsValue:
    """Определяет форму значения из конфига; иная форма – ошибка конфигурации."""
    if isinstance(raw, str):
        return Single(raw)
    if isinstance(raw, (list, tuple)):
        if not all(isinstance(v, str) for v in raw):
            raise TypeError(f"список должен содержать только строки: {raw!r}")
        return ValueList(tuple(raw))
    if isinstance(raw, dict):
        return ByOs(dict(raw))
    raise TypeError(f"неподдерживаемое значение, зависящее от ОС: {raw!r}")


def resolve_os_value(value: OsValue, platform: Optional[str] = None) -> List[str]:
    """Возвращает значение для текущей (или указанной) платформы в виде списка строк."""
    platform = platform or sys.platform
    if isinstance(value, Single):
        return [value.value]
    if isinstance(value, ValueList):
        return list(value.values)
    chosen: Any = None
    for key, val in value.values.items():
        if key != "default" and platform.startswith(key):
            chosen = val
            break
    if chosen is None:
        chosen = value.values.get("default")
    if chosen is None:
        return []
    return resolve_os_value(parse_os_value(chosen), platform)


def _single_os_value(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    resolved = resolve_os_value(parse_os_value(raw))
    return resolved[0] if resolved else None


# --------------------------------------------------------------------------- #
# Regex helpers                                                               #
# --------------------------------------------------------------------------- #


def compile_patterns(raw: Any, *, label: str = "pattern") -> List[re.Pattern[str]]:
    """Компилирует список шаблонов; неверные логируются и пропускаются."""
    if raw is None:
        return []
    if isinstance(raw, (str, re.Pattern)):
        raw = [raw]
    compiled: List[re.Pattern[str]] = []
    for item in raw:
        if isinstance(item, re.Pattern):
            compiled.append(item)
            continue
        if not item:
            continue
        try:
            compiled.append(re.compile(item))
        except re.error as exc:
            logger.warning("Invalid %s regex %r: %s (skipping)", label, item, exc)
    return compiled


_DEFAULT_URL_DENY = [r"\bexit\b", r"\blogout\b", r"\bdelete\b", r"\bsignin\b", r"\bsignout\b"]


# --------------------------------------------------------------------------- #
# Schema                                                                      #
# --------------------------------------------------------------------------- #


class BasesConfig(BaseModel):
    """Базовые URL двух сравниваемых развёртываний."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    ref: str = Field(..., description="Эталонный сайт.")
    new: str = Field(..., description="Проверяемый сайт.")

    @field_validator("ref", "new", mode="before")
    def _strip_trailing_slash(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().rstrip("/")
            if not re.match(r"^https?://", v):
                raise ValueError(f"ожидается http(s) URL, получено {v!r}")
        return v


class RetryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    retries: int = Field(3, ge=1, description="Число попыток.")
    sleep: float = Field(1.0, ge=0, description="Пауза между попытками (секунд).")


class RpcTimeouts(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    send_command: float = Field(10.0, gt=0, description="Бюджет на подключение к воркеру.")
    get_answer: float = Field(60.0, gt=0, description="Бюджет на ожидание ответа.")
    execute: float = Field(120.0, gt=0, description="Общий бюджет широковещательного вызова.")


class BrowserConfig(BaseModel):
    """Настройки WebDriver-сессии и ожидания готовности страницы."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    driver_url: str = Field("http://127.0.0.1:9515", description="URL запущенного chromedriver.")
    width: int = Field(1366, ge=4)
    height: int = Field(768, ge=3)
    headless: bool = True
    timeout: float = Field(5.0, gt=0, description="Общий дедлайн ожидания готовности (секунд).")
    quiet_ms: int = Field(500, ge=0, description="Окно тишины сети/DOM (мс).")
    poll_interval: float = Field(0.1, gt=0)
    perf_ring_size: int = Field(2000, ge=1)
    navigate: RetryConfig = Field(default_factory=lambda: RetryConfig(retries=3, sleep=2.0))
    exec_js: RetryConfig = Field(default_factory=lambda: RetryConfig(retries=3, sleep=1.0))
    timeouts: RpcTimeouts = Field(default_factory=RpcTimeouts)
    binary: Optional[str] = Field(None, description="Путь к браузеру (строка или {os: путь}).")
    workdir: Optional[str] = None
    extra_args: List[str] = Field(default_factory=list)

    @field_validator("binary", "workdir", mode="before")
    def _resolve_single(cls, v: Any) -> Any:
        return _single_os_value(v)

    @field_validator("extra_args", mode="before")
    def _resolve_list(cls, v: Any) -> Any:
        if v is None:
            return []
        return resolve_os_value(parse_os_value(v))


class HtmlsCompare(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    ignore_dom_selectors: List[str] = Field(default_factory=lambda: ["script", "style"])
    ignore_dom_attributes: List[re.Pattern[str]] = Field(default_factory=lambda: compile_patterns(["^aria-"]))
    ignore_text_patterns: List[re.Pattern[str]] = Field(default_factory=list)

    @field_validator("ignore_dom_attributes", "ignore_text_patterns", mode="before")
    def _compile(cls, v: Any) -> Any:
        return compile_patterns(v, label="compare.htmls")


class ScreenshotsCompare(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = False
    rmse_threshold: float = Field(0.01, ge=0, le=1, description="Доля от максимального RGB-расстояния.")
    threshold_count: int = Field(
        10, ge=0, description="Допустимое число отличающихся пикселей (шум рендеринга)."
    )


class CompareSection(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    htmls: HtmlsCompare = Field(default_factory=HtmlsCompare)
    screenshots: ScreenshotsCompare = Field(default_factory=ScreenshotsCompare)


class LinkFinder(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    find: str = "a[href]"
    member: str = "href"


class ByLinkConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    finders: List[LinkFinder] = Field(default_factory=lambda: [LinkFinder()])
    honor_query: bool = True
    href_allow: List[re.Pattern[str]] = Field(default_factory=list)
    href_deny: List[re.Pattern[str]] = Field(
        default_factory=lambda: compile_patterns(["^#|^javascript:|^callto:|^mailto:|^tel:"])
    )
    url_allow: List[re.Pattern[str]] = Field(default_factory=list)
    url_deny: List[re.Pattern[str]] = Field(default_factory=lambda: compile_patterns(_DEFAULT_URL_DENY))

    @field_validator("href_allow", "href_deny", "url_allow", "url_deny", mode="before")
    def _compile(cls, v: Any) -> Any:
        return compile_patterns(v, label="crawl.by_link")


class ByClickConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = False
    finders: List[str] = Field(
        default_factory=lambda: [
            "a[href]",
            '[role="link"]',
            "[data-link]",
            "[data-router-link]",
            "button",
            "[onclick]",
        ]
    )
    css_excludes: List[str] = Field(default_factory=list)
    href_deny: List[re.Pattern[str]] = Field(
        default_factory=lambda: compile_patterns(["^#|^callto:|^mailto:|^tel:"])
    )
    text_deny: List[re.Pattern[str]] = Field(default_factory=list)
    locator_deny: List[re.Pattern[str]] = Field(default_factory=lambda: compile_patterns(_DEFAULT_URL_DENY))
    equivalent_min_score: float = Field(2.0, ge=0)
    intermediate_screenshots: bool = True

    @field_validator("href_deny", "text_deny", "locator_deny", mode="before")
    def _compile(cls, v: Any) -> Any:
        return compile_patterns(v, label="crawl.by_click")


class FormConfig(BaseModel):
    """Описание формы, ключ – CSS-селектор (обрабатываются селекторы ``select...``)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    submit_selector: Optional[str] = Field(None, description="Кнопка отправки; без неё ждём событие change.")


class CrawlConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_visited: int = Field(10, ge=0, description="0 – без ограничения.")
    same_host: bool = True
    max_successive_errors: int = Field(10, ge=1)
    by_link: ByLinkConfig = Field(default_factory=ByLinkConfig)
    by_click: ByClickConfig = Field(default_factory=ByClickConfig)
    forms: Dict[str, FormConfig] = Field(default_factory=dict, description="Формы, обрабатываемые после каждого визита.")


class ArtifactsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    htmls: bool = True
    screenshots: bool = True


class WorkersConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    ref: int = Field(..., ge=1, le=65535)
    new: int = Field(..., ge=1, le=65535)


class SignatureChain(BaseModel):
    """Начальная цепочка: последовательность шагов, последний из которых – цель."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    label: str = ""
    chain: List[Dict[str, Any]] = Field(default_factory=list)


class RoleConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    routes: List[str] = Field(default_factory=lambda: ["/"])
    signatures: List[SignatureChain] = Field(default_factory=list)
    workers: Optional[WorkersConfig] = None
    login_pattern: Optional[re.Pattern[str]] = Field(
        None, description="URL, на который воркер попадает при потере сессии."
    )

    @field_validator("routes", mode="after")
    def _absolute_routes(cls, v: List[str]) -> List[str]:
        return [r if r.startswith("/") else f"/{r}" for r in v] or ["/"]

    @field_validator("login_pattern", mode="before")
    def _compile_login(cls, v: Any) -> Any:
        if v is None or isinstance(v, re.Pattern):
            return v
        compiled = compile_patterns([v], label="roles.login_pattern")
        return compiled[0] if compiled else None


class RunMode(str, Enum):
    LOCAL = "local"
    DAEMON = "daemon"


class CompareConfig(BaseModel):
    """Конфигурация одного запуска сравнения."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    bases: BasesConfig
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    compare: CompareSection = Field(default_factory=CompareSection)
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    artifacts: ArtifactsConfig = Field(default_factory=ArtifactsConfig)
    roles: Dict[str, RoleConfig] = Field(
        default_factory=lambda: {"default": RoleConfig()}, description="Роли (учётные записи)."
    )
    mode: RunMode = RunMode.LOCAL
    output_dir: str = Field("results", description="Корень для артефактов и отчётов.")

    @model_validator(mode="after")
    def _check_daemon_workers(self) -> CompareConfig:
        if self.mode is RunMode.DAEMON:
            missing = [n for n, r in self.roles.items() if r.enabled and r.workers is None]
            if missing:
                raise ValueError(f"режим daemon требует 'workers' для ролей: {', '.join(missing)}")
        return self

    def base_url(self, which: str) -> str:
        if which == "ref":
            return self.bases.ref
        if which == "new":
            return self.bases.new
        raise ValueError(f"which должен быть 'ref' или 'new', получено {which!r}")

    def enabled_roles(self) -> Dict[str, RoleConfig]:
        return {name: role for name, role in self.roles.items() if role.enabled}

    def with_overrides(self, overrides: RunOverrides) -> CompareConfig:
        """Возвращает копию конфига с параметрами командной строки."""
        by_link = self.crawl.by_link
        by_click = self.crawl.by_click
        if overrides.by_link is not None:
            by_link = by_link.model_copy(update={"enabled": overrides.by_link})
        if overrides.by_click is not None:
            by_click = by_click.model_copy(update={"enabled": overrides.by_click})
        crawl_update: Dict[str, Any] = {"by_link": by_link, "by_click": by_click}
        if overrides.max_visited is not None:
            crawl_update["max_visited"] = overrides.max_visited
        update: Dict[str, Any] = {"crawl": self.crawl.model_copy(update=crawl_update)}
        if overrides.output_dir is not None:
            update["output_dir"] = str(overrides.output_dir)
        return self.model_copy(update=update)


@dataclass(frozen=True, slots=True)
class RunOverrides:
    max_visited: Optional[int] = None
    by_link: Optional[bool] = None
    by_click: Optional[bool] = None
    output_dir: Optional[Union[str, Path]] = None


# --------------------------------------------------------------------------- #
# Loading                                                                     #
# --------------------------------------------------------------------------- #

_DEFAULT_CFG = Path("configs/default.yaml")


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Неправильный YAML в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень YAML должен быть mapping, получено {type(data).__name__}")
    return data


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8")) or {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Неправильный JSON в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень JSON должен быть mapping, получено {type(data).__name__}")
    return data


def load_config(path: Union[str, Path, None]) -> CompareConfig:
    """
    Читает YAML или JSON и возвращает проверенный объект CompareConfig.
    При отсутствии файла конфига бросает FileNotFoundError.
    """
    if path is None:
        if not _DEFAULT_CFG.exists():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(_DEFAULT_CFG))
        path_obj = _DEFAULT_CFG
    else:
        path_obj = Path(path).expanduser().resolve()
        if not path_obj.is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path_obj))

    suffix = path_obj.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = _read_yaml(path_obj)
    elif suffix == ".json":
        data = _read_json(path_obj)
    else:
        raise ValueError(f"Неподдерживаемый формат конфига: {suffix}")

    try:
        cfg = CompareConfig(**data)
    except ValidationError:
        logger.error("Invalid configuration in %s", path_obj)
        raise
    logger.debug("Loaded configuration from %s (%d role(s))", path_obj, len(cfg.roles))
    return cfg
