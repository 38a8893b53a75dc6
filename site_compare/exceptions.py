"""site_compare.exceptions: иерархия исключений движка сравнения.

Расхождения между ref и new никогда не являются исключениями: это данные
(список причин из :meth:`Capture.compare`). Исключения описывают только сбои.
"""

from __future__ import annotations

__all__ = (
    "CompareError",
    "ContractError",
    "SessionError",
    "SessionTimeout",
    "NoCapture",
    "RestoreError",
    "RpcError",
    "RemoteDriverError",
)


class CompareError(Exception):
    """Базовый класс для всех ошибок site_compare."""


class ContractError(CompareError):
    """Нарушение внутреннего контракта (нет обязательного аргумента, неверная форма данных).

    Не перехватывается краулером: сигнализирует о логической ошибке и завершает запуск.
    """


class SessionError(CompareError):
    """Ошибка браузерной сессии, которая отменяет текущий визит, но не весь обход."""

    reason: str = "session_error"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class SessionTimeout(SessionError):
    """Исчерпаны повторы navigate/exec_js по таймауту."""

    reason = "timeout"


class NoCapture(SessionError):
    """Страница не готова (нет body) или элемент для клика не найден."""

    reason = "no_capture"


class RestoreError(SessionError):
    """Цепочка исчерпана, а исходная сигнатура так и не достигнута."""

    reason = "restore_failed"


class RpcError(CompareError):
    """Ошибка транспорта между процессом роли и воркером."""


class RemoteDriverError(CompareError):
    """Непредвиденная ошибка WebDriver, случившаяся в воркере.

    ``name`` – имя класса исходного исключения; краулер раскладывает такие
    ошибки в ту же корзину ``unexpected``, что и локальные ``WebDriverException``.
    """

    def __init__(self, message: str, *, name: str) -> None:
        super().__init__(message)
        self.name = name
