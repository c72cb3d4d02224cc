"""Config settings – TransactionSettings and the process-wide default."""
from __future__ import annotations

import dataclasses
import threading
from typing import ClassVar

from mp_txscope.config.settings.base import Settings
from mp_txscope.config.settings.factory import SettingsFactory
from mp_txscope.config.settings.loaders import EnvSettingsLoader
from mp_txscope.config.validation import InvalidSettingValueError
from mp_txscope.kernel.types import IsolationLevel


@dataclasses.dataclass
class TransactionSettings(Settings):
    """Defaults applied when callers omit transaction arguments.

    Environment variables: ``TXSCOPE_CONNECTION_STRING``,
    ``TXSCOPE_ISOLATION_LEVEL``, ``TXSCOPE_ASYNC_FLOW``,
    ``TXSCOPE_REJECT_DISTRIBUTED``.
    """

    _prefix: ClassVar[str] = "TXSCOPE"

    connection_string: str = ""
    isolation_level: str = "unspecified"
    async_flow: bool = False
    reject_distributed: bool = False

    def _validate(self) -> None:
        try:
            IsolationLevel.parse(self.isolation_level)
        except ValueError:
            raise InvalidSettingValueError(
                "isolation_level",
                self.isolation_level,
                f"expected one of {[lvl.value for lvl in IsolationLevel]}",
            ) from None

    @property
    def isolation(self) -> IsolationLevel:
        return IsolationLevel.parse(self.isolation_level)


_lock = threading.Lock()
_current: TransactionSettings | None = None


def configure(settings: TransactionSettings | None) -> None:
    """Install *settings* as the process default.

    ``None`` drops the installed value; the next :func:`current_settings`
    call reads the ``TXSCOPE_*`` environment again.
    """
    global _current
    with _lock:
        _current = settings


def current_settings() -> TransactionSettings:
    """Return the process default, loading it from the environment on first use."""
    global _current
    with _lock:
        if _current is not None:
            return _current
    loaded = SettingsFactory.create(TransactionSettings, loaders=[EnvSettingsLoader()])
    with _lock:
        if _current is None:
            _current = loaded
        return _current


__all__ = ["TransactionSettings", "configure", "current_settings"]
