"""Declarative library queries over the local cache."""

from .engine import QueryEngine

__all__ = ["QueryEngine"]
