"""In-memory caches used by the competency engine."""

from .progress_cache import CacheEntry, ProgressCache, normalize_subject_id

__all__ = ["CacheEntry", "ProgressCache", "normalize_subject_id"]
