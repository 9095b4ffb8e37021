"""Configuration loader for govharvest site runs."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError
from .http_client import DEFAULT_USER_AGENT
from .models import ClientConfig, DelayPolicy, RetryPolicy


@dataclass
class SiteConfig:
    """Effective settings for one site: source defaults overlaid by YAML."""

    name: str
    page_size: int = 50
    page_delay_ms: float = 0
    page_delay_max_ms: Optional[float] = None
    max_pages: Optional[int] = None
    detail_batch_size: int = 5
    detail_delay_ms: float = 0
    checkpoint_every: int = 10
    download_delay_ms: float = 0
    legacy_tls: bool = False
    renderer: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "SiteConfig":
        known = {item.name for item in fields(cls)} - {"name"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown settings for site '{name}': {', '.join(unknown)}")

        values = dict(data)
        values["options"] = dict(values.get("options") or {})
        site = cls(name=name, **values)
        if site.page_size < 1:
            raise ConfigurationError(f"page_size for site '{name}' must be positive")
        return site

    @property
    def page_delay(self) -> DelayPolicy:
        return DelayPolicy.from_ms(self.page_delay_ms, self.page_delay_max_ms)

    @property
    def detail_delay(self) -> DelayPolicy:
        return DelayPolicy.from_ms(self.detail_delay_ms)

    @property
    def download_delay(self) -> DelayPolicy:
        return DelayPolicy.from_ms(self.download_delay_ms)


class HarvestConfig:
    """Central configuration container backed by ``config/sites.yaml``."""

    DEFAULT_CONFIG_PATH = Path("config/sites.yaml")

    def __init__(self, config_path: Optional[Path | str] = None) -> None:
        path = Path(config_path) if config_path else self.DEFAULT_CONFIG_PATH
        if not path.is_absolute():
            path = Path.cwd() / path
        self.config_path = path
        self._data = self._load_config(explicit=config_path is not None)

    def _load_config(self, explicit: bool) -> Dict[str, Any]:
        if not self.config_path.exists():
            if explicit:
                raise ConfigurationError(f"Config file not found: {self.config_path}")
            return {"settings": {}, "sites": {}}
        try:
            with open(self.config_path, "r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {self.config_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {self.config_path}")
        return data

    def get_setting(self, key: str, default: Any = None) -> Any:
        return (self._data.get("settings") or {}).get(key, default)

    def site_overrides(self, name: str) -> Dict[str, Any]:
        sites = self._data.get("sites") or {}
        return dict(sites.get(name) or {})

    def site_config(self, name: str, defaults: Optional[Dict[str, Any]] = None) -> SiteConfig:
        merged = dict(defaults or {})
        overrides = self.site_overrides(name)
        options = {**merged.pop("options", {}), **(overrides.pop("options", None) or {})}
        merged.update(overrides)
        merged["options"] = options
        return SiteConfig.from_dict(name, merged)

    @property
    def output_root(self) -> Path:
        return Path(self.get_setting("output_root", "result"))

    @property
    def log_dir(self) -> Path:
        return Path(self.get_setting("log_dir", "logs"))

    @property
    def user_agent(self) -> str:
        return self.get_setting("user_agent", DEFAULT_USER_AGENT)

    @property
    def timeout_seconds(self) -> float:
        return float(self.get_setting("timeout_seconds", 30.0))

    def retry_policy(self) -> RetryPolicy:
        try:
            return RetryPolicy.from_dict(self.get_setting("retry"))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid retry settings: {exc}") from exc

    def client_config(self, site: SiteConfig) -> ClientConfig:
        return ClientConfig(
            name=site.name,
            timeout_seconds=self.timeout_seconds,
            headers={"User-Agent": self.user_agent},
            retry=self.retry_policy(),
            legacy_tls=site.legacy_tls,
        )
