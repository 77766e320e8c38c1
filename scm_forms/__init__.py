"""Dynamic entity forms and cascading School/Class/Division selection."""

__version__ = "0.1.0"
