"""Core utility functions."""

from core.utils.worker_id import generate_worker_id

__all__ = ["generate_worker_id"]
