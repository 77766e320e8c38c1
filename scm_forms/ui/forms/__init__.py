"""Schema-driven form engine."""

from .builder import FieldDescriptor, FieldKind, FormBuilder
from .engine import FormEndpoints, FormEngine, FormMode, FormSnapshot, render

__all__ = [
    "FieldDescriptor",
    "FieldKind",
    "FormBuilder",
    "FormEndpoints",
    "FormEngine",
    "FormMode",
    "FormSnapshot",
    "render",
]
