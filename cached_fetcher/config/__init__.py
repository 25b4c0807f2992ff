from .settings import CacheSettings

__all__ = ["CacheSettings"]
