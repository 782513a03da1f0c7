from orvion.cache.response_cache import CacheEntry, ResponseCache, cache_key, normalize

__all__ = ["CacheEntry", "ResponseCache", "cache_key", "normalize"]
