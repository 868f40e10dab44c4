"""Distributed advisory locks backed by Redis."""

from src.locks.service import LockService, make_holder_id

__all__ = ["LockService", "make_holder_id"]
