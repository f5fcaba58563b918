from .retained_cache import RetainedStateCache

__all__ = ["RetainedStateCache"]
