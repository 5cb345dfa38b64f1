"""Task modules grouped by domain.

Import side effects register Celery tasks once this package is imported.
"""
from . import maintenance, wallet  # noqa: F401 to register tasks

__all__ = ["maintenance", "wallet"]
