import copy
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
import os
from typing import Any, Final, Mapping

import yaml

# Fixed paging body sent with every POST-style list fetch.  Many list
# endpoints of the school-management backend refuse a request without it.
DEFAULT_PAGE_REQUEST: Final[Mapping[str, Any]] = {
    "page": 0,
    "size": 1000,
    "sortBy": "id",
    "sortDir": "asc",
    "search": "",
}

# Record fields that arrive as numbers but are compared as strings in the UI.
IDENTIFIER_FIELDS: Final[tuple[str, ...]] = ("classId", "divisionId", "schoolId", "rollNo")

# Date fields whose value may be delivered under an alternate key.
DATE_FIELD_ALIASES: Final[Mapping[str, tuple[str, ...]]] = {
    "dob": ("dob", "date_of_birth"),
}

# Placeholder tokens understood in option-source URL templates.
ACCOUNT_ID_PLACEHOLDER: Final[str] = "{accountId}"

SCD_SCHOOL_FIELD: Final[str] = "schoolId"
SCD_CLASS_FIELD: Final[str] = "classId"
SCD_DIVISION_FIELD: Final[str] = "divisionId"

FORMS_CONFIG_FILENAME: Final[str] = "config_forms.yaml"

_DEFAULT_MESSAGES: Final[Mapping[str, str]] = {
    "required": "{label} is required.",
    "invalid_email": "{label} must be a valid email address.",
    "invalid_tel": "{label} must contain 10 to 15 digits.",
    "invalid_number": "{label} must be a number.",
    "invalid_date": "{label} must be a valid date.",
    "too_long": "{label} must be at most {max_length} characters.",
    "future_date": "{label} cannot be in the future.",
    "fetch_failed": "Failed to fetch {entity} details.",
    "submit_success": "{entity} {action} successfully!",
    "submit_failed": "Failed to {action} {entity}.",
    "select_placeholder": "Select {label}",
}


def get_model_config_base() -> Path:
    """Return the base directory for YAML model configuration."""
    return Path(__file__).resolve().parents[1] / "ui" / "model" / "config"


def _read_yaml_dict(path: Path) -> dict[str, Any]:
    """Return mapping parsed from *path*, raising on malformed YAML."""
    if not path.exists():
        logging.debug("Config file %s does not exist; using empty mapping", path)
        return {}
    try:
        content = path.read_text(encoding="utf-8")
    except Exception as exc:  # pragma: no cover - file permission issues are environment-dependent
        raise RuntimeError(f"Failed to read config file {path}: {exc}") from exc
    try:
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as exc:
        raise RuntimeError(f"Failed to parse YAML file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise RuntimeError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return dict(data)


@lru_cache(maxsize=None)
def _load_config_cached(base_dir: str) -> dict[str, Any]:
    """Load the forms configuration file from *base_dir*."""
    return _read_yaml_dict(Path(base_dir) / FORMS_CONFIG_FILENAME)


def load_config(
    refresh: bool = False,
    *,
    base_dir: str | os.PathLike[str] | None = None,
) -> dict[str, Any]:
    """Return a deep-copied configuration dictionary.

    Set ``refresh=True`` to discard the cached content and re-read from disk.
    """
    config_base = Path(base_dir) if base_dir is not None else get_model_config_base()
    cache_key = str(config_base.resolve())
    if refresh:
        _load_config_cached.cache_clear()
    data = _load_config_cached(cache_key)
    return copy.deepcopy(data)


def _coerce_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class FormSettings:
    """Aggregated form-engine switches parsed from configuration."""

    page_size: int = int(DEFAULT_PAGE_REQUEST["size"])
    sort_by: str = str(DEFAULT_PAGE_REQUEST["sortBy"])
    sort_dir: str = str(DEFAULT_PAGE_REQUEST["sortDir"])
    messages: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        merged = dict(_DEFAULT_MESSAGES)
        merged.update(self.messages or {})
        object.__setattr__(self, "messages", merged)

    def page_request(self) -> dict[str, Any]:
        """Return a fresh paging body for list fetches."""
        body = dict(DEFAULT_PAGE_REQUEST)
        body.update({"size": self.page_size, "sortBy": self.sort_by, "sortDir": self.sort_dir})
        return body

    def message(self, key: str, **params: Any) -> str:
        """Format the message template stored under *key*."""
        template = self.messages.get(key) or _DEFAULT_MESSAGES.get(key, key)
        try:
            return template.format(**params)
        except (KeyError, IndexError):
            logging.debug("Message template %s missing parameters %s", key, params, exc_info=True)
            return template


def get_form_settings(
    *, config: Mapping[str, Any] | None = None, refresh: bool = False
) -> FormSettings:
    """Return the consolidated form settings from the configuration."""

    try:
        data = config if config is not None else load_config(refresh=refresh)
    except Exception:
        logging.debug("Failed to load forms config", exc_info=True)
        return FormSettings()
    if not isinstance(data, Mapping):
        return FormSettings()

    options_cfg = data.get("options")
    if not isinstance(options_cfg, Mapping):
        options_cfg = {}
    messages_cfg = data.get("messages")
    messages = {str(k): str(v) for k, v in messages_cfg.items()} if isinstance(messages_cfg, Mapping) else {}

    return FormSettings(
        page_size=_coerce_int(options_cfg.get("page_size"), int(DEFAULT_PAGE_REQUEST["size"])),
        sort_by=str(options_cfg.get("sort_by") or DEFAULT_PAGE_REQUEST["sortBy"]),
        sort_dir=str(options_cfg.get("sort_dir") or DEFAULT_PAGE_REQUEST["sortDir"]),
        messages=messages,
    )
