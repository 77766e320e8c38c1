"""Data-source capability consumed by the form engine."""

from .data_source import DataSource, DataSourceError

__all__ = ["DataSource", "DataSourceError"]
