"""govharvest package namespace."""

from importlib import import_module
from typing import Any

__all__ = [
    "PageHarvester",
    "DetailHarvester",
    "AttachmentDownloader",
    "HarvestConfig",
    "HarvestRunner",
    "build_source",
    "deduplicate",
]


def __getattr__(name: str) -> Any:
    if name in ("PageHarvester", "deduplicate"):
        module = import_module("src.govharvest.harvester")
        return getattr(module, name)
    elif name == "DetailHarvester":
        module = import_module("src.govharvest.details")
        return getattr(module, name)
    elif name == "AttachmentDownloader":
        module = import_module("src.govharvest.downloader")
        return getattr(module, name)
    elif name == "HarvestConfig":
        module = import_module("src.govharvest.config")
        return getattr(module, name)
    elif name == "HarvestRunner":
        module = import_module("src.govharvest.runner")
        return getattr(module, name)
    elif name == "build_source":
        module = import_module("src.govharvest.sources")
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(__all__)
