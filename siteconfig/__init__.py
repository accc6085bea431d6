from .site import JSON_SETTING_KEYS, SETTING_KEYS, HeroConfig, SiteConfig, load_site_config, split_csv
from .store import get_all_settings, get_json_setting, get_setting, update_settings

__all__ = [
    "JSON_SETTING_KEYS",
    "SETTING_KEYS",
    "HeroConfig",
    "SiteConfig",
    "load_site_config",
    "split_csv",
    "get_all_settings",
    "get_json_setting",
    "get_setting",
    "update_settings",
]
