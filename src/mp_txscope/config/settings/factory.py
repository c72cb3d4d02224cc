"""Config settings – SettingsFactory."""
from __future__ import annotations

import dataclasses
from typing import Any, Sequence, TypeVar

from mp_txscope.config.settings.base import Settings
from mp_txscope.config.settings.loaders import SettingsLoader
from mp_txscope.config.validation.errors import (
    ConfigError,
    MissingRequiredSettingError,
)
from mp_txscope.observability.logging import get_logger

T = TypeVar("T", bound=Settings)

logger = get_logger(__name__)


class SettingsFactory:
    """Merge outputs from several loaders, apply overrides, and construct
    a settings dataclass in one step.

    Loaders are applied in order; later loaders override earlier ones for
    overlapping fields. *overrides* take the highest priority. A loader that
    fails with :class:`ConfigError` is logged and skipped so the remaining
    sources may still contribute values.
    """

    @staticmethod
    def create(
        settings_cls: type[T],
        loaders: Sequence[SettingsLoader] | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> T:
        """
        Parameters
        ----------
        settings_cls:
            The :class:`~mp_txscope.config.settings.base.Settings` subclass to
            construct.
        loaders:
            Ordered loaders. Later loaders win on field conflicts.
        overrides:
            Explicit key-value pairs applied after all loaders.

        Raises
        ------
        MissingRequiredSettingError
            When a required field is absent after all sources are merged.
        ConfigError
            On any other construction failure.
        """
        merged: dict[str, Any] = {}

        for loader in loaders or []:
            try:
                instance = loader.load(settings_cls)
            except ConfigError as exc:
                logger.warning("settings.loader_skipped", loader=type(loader).__name__, error=exc.message)
                continue
            merged.update(instance.as_dict())

        if overrides:
            merged.update(overrides)

        for field in dataclasses.fields(settings_cls):  # type: ignore[arg-type]
            if field.name in merged:
                continue
            if (
                field.default is dataclasses.MISSING
                and field.default_factory is dataclasses.MISSING  # type: ignore[misc]
            ):
                raise MissingRequiredSettingError(field.name)

        try:
            return settings_cls(**merged)
        except ConfigError:
            raise
        except Exception as exc:
            raise ConfigError(f"Failed to construct {settings_cls.__name__}: {exc}", cause=exc) from exc


__all__ = ["SettingsFactory"]
