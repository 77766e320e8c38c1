from .constants import FormSettings, get_form_settings, load_config

__all__ = ["FormSettings", "get_form_settings", "load_config"]
