"""Registry of entity form presets."""

from __future__ import annotations

from typing import Callable, Type

from .base import FormPreset

_PRESET_REGISTRY: dict[str, Type[FormPreset]] = {}


def register_preset(preset_id: str) -> Callable[[Type[FormPreset]], Type[FormPreset]]:
    """Decorator used by preset modules to register themselves."""

    def decorator(cls: Type[FormPreset]) -> Type[FormPreset]:
        if preset_id in _PRESET_REGISTRY and _PRESET_REGISTRY[preset_id] is not cls:
            raise ValueError(f"Form preset {preset_id} is already registered")
        _PRESET_REGISTRY[preset_id] = cls
        cls.preset_id = preset_id
        return cls

    return decorator


def get_preset(preset_id: str) -> FormPreset:
    """Instantiate the preset registered under ``preset_id``."""

    try:
        factory = _PRESET_REGISTRY[preset_id]
    except KeyError:
        raise KeyError(f"Unknown form preset: {preset_id}") from None
    return factory()


def list_registered_presets() -> list[str]:
    """Return identifiers for all registered presets."""

    return sorted(_PRESET_REGISTRY.keys())


__all__ = [
    "FormPreset",
    "register_preset",
    "get_preset",
    "list_registered_presets",
]

# Import preset modules to register implementations.
from . import student_section  # noqa: F401,E402
from . import teacher_section  # noqa: F401,E402
