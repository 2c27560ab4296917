from xsolock.core.config.manager import ConfigManager
from xsolock.core.config.models import AdminConfig, AppConfig, HookConfig, StationConfig, StoreConfig, WebConfig
from xsolock.core.config.paths import ConfigFsPaths

__all__ = [
    "ConfigManager",
    "ConfigFsPaths",
    "AppConfig",
    "AdminConfig",
    "HookConfig",
    "StationConfig",
    "StoreConfig",
    "WebConfig",
]
