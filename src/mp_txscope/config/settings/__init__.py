"""Config settings – 12-factor env-based configuration."""
from mp_txscope.config.settings.base import Settings
from mp_txscope.config.settings.factory import SettingsFactory
from mp_txscope.config.settings.loaders import DotenvSettingsLoader, EnvSettingsLoader, SettingsLoader
from mp_txscope.config.settings.transactions import TransactionSettings, configure, current_settings

__all__ = [
    "DotenvSettingsLoader",
    "EnvSettingsLoader",
    "Settings",
    "SettingsFactory",
    "SettingsLoader",
    "TransactionSettings",
    "configure",
    "current_settings",
]
