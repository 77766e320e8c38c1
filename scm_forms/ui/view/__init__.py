"""Event surface between the form engine and the hosting screen."""

from .ui_adapter import EventRecorder, UiEvent

__all__ = ["EventRecorder", "UiEvent"]
