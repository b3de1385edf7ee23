"""Backends the client core delegates mutations to."""

from .base import FIELD_MAP, ManifestBackend, map_field_errors

__all__ = ["FIELD_MAP", "ManifestBackend", "map_field_errors"]
