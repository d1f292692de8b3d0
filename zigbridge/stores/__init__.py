"""Persistent stores used between builds."""

from .build_cache import BuildCache, CACHE_FILENAME, fingerprint

__all__ = ["BuildCache", "CACHE_FILENAME", "fingerprint"]
