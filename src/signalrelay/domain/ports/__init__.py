from .cache import CachePort
from .mapping_store import MappingStorePort
from .page_resolver import PageResolverPort

__all__ = [
    "CachePort",
    "MappingStorePort",
    "PageResolverPort",
]
