"""Write batches, key comparers and a namespaced LRU cache for a log-structured key/value store."""

__version__ = "0.1.0"
__all__ = ["batch", "cache", "comparer"]