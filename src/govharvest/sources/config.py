"""Source registry and construction from configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Type

from ..config import HarvestConfig, SiteConfig
from ..errors import ConfigurationError
from ..http_client import HTTPClient
from ..renderers import BrowserRenderer, FileRenderer, HttpRenderer, Renderer
from .base import SiteSource

SOURCE_REGISTRY: Dict[str, Type[SiteSource]] = {}

RENDERERS = ("http", "file", "browser")


def register_source(name: str) -> Any:
    """Decorator to register a source class under its CLI name."""

    def decorator(cls: Type[SiteSource]) -> Type[SiteSource]:
        SOURCE_REGISTRY[name] = cls
        return cls

    return decorator


def available_sources() -> List[str]:
    return sorted(SOURCE_REGISTRY)


def get_source_class(name: str) -> Type[SiteSource]:
    source_cls = SOURCE_REGISTRY.get(name)
    if source_cls is None:
        raise ConfigurationError(
            f"Unknown site '{name}'. Available: {', '.join(available_sources())}"
        )
    return source_cls


def build_renderer(
    source_cls: Type[SiteSource],
    site: SiteConfig,
    http_client: HTTPClient,
) -> Optional[Renderer]:
    """Instantiate the renderer named by ``site.renderer`` (``None`` for JSON sources)."""
    kind = site.renderer
    if kind is None:
        return None
    if kind not in RENDERERS:
        raise ConfigurationError(f"Unknown renderer '{kind}' for site '{site.name}'")

    options = site.options
    if kind == "file":
        pages_dir = options.get("pages_dir")
        if not pages_dir:
            raise ConfigurationError(f"Site '{site.name}' uses the file renderer but sets no options.pages_dir")
        return FileRenderer(Path(pages_dir), options.get("page_pattern", "page_{page}.html"))

    if kind == "http":
        url_template = options.get("url_template")
        if not url_template:
            raise ConfigurationError(f"Site '{site.name}' uses the http renderer but sets no options.url_template")
        return HttpRenderer(http_client, url_template)

    if source_cls.wait_selector is None or source_cls.page_link is None:
        raise ConfigurationError(f"Site '{site.name}' cannot be rendered in a browser")
    return BrowserRenderer(
        options.get("start_url", source_cls.listing_url),
        wait_selector=source_cls.wait_selector,
        page_link=source_cls.page_link,
        first_page_index=source_cls.first_page_index,
        page_load_timeout=float(options.get("page_load_timeout", 60.0)),
        navigation_attempts=int(options.get("navigation_attempts", 3)),
        retry_pause=float(options.get("retry_pause", 5.0)),
    )


def build_source(
    name: str,
    config: HarvestConfig,
    *,
    variant: Optional[str] = None,
    output_root: Optional[Path] = None,
    http_client: Optional[HTTPClient] = None,
    renderer: Optional[Renderer] = None,
) -> SiteSource:
    """Build a configured source instance with its HTTP client and renderer."""
    source_cls = get_source_class(name)
    site = config.site_config(name, source_cls.defaults)
    client = http_client or HTTPClient(config.client_config(site))
    if renderer is None:
        renderer = build_renderer(source_cls, site, client)

    return source_cls(
        site,
        client,
        output_root=output_root or config.output_root,
        variant=variant,
        renderer=renderer,
    )
