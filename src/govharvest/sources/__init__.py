"""Site sources for govharvest.

Importing this package registers every source in ``SOURCE_REGISTRY``.
"""

from src.govharvest.sources.base import SiteSource
from src.govharvest.sources.config import (
    SOURCE_REGISTRY,
    available_sources,
    build_source,
    get_source_class,
    register_source,
)
from src.govharvest.sources import dichvucong, emoh, mod, thutuc, vanban  # noqa: F401

__all__ = [
    "SOURCE_REGISTRY",
    "SiteSource",
    "available_sources",
    "build_source",
    "get_source_class",
    "register_source",
]
