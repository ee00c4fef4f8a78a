"""Configuration loading from .env and YAML files."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

DATA_DIR_ENV = "REFGRAPH_DATA_DIR"


@dataclass
class ThresholdConfig:
    high: float = 0.9
    medium: float = 0.7
    low: float = 0.5


@dataclass
class LinkingConfig:
    min_confidence: float = 0.6
    batch_size: int = 50
    delay_ms: int = 100
    max_links_per_record: int = 100
    title_metric: str = "levenshtein"


@dataclass
class StoreConfig:
    retry_attempts: int = 3
    retry_wait_max: float = 1.0


@dataclass
class CacheConfig:
    enabled: bool = True
    ttl_seconds: float = 300.0


@dataclass
class Config:
    data_dir: Path = field(default_factory=lambda: Path.home() / ".refgraph")
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    linking: LinkingConfig = field(default_factory=LinkingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "refgraph.db"

    @property
    def reports_dir(self) -> Path:
        return self.data_dir / "reports"


def _section(raw: dict[str, Any], name: str, current: Any) -> Any:
    """Build a new section dataclass from *raw[name]*, keeping unset defaults."""
    values = raw.get(name) or {}
    merged = {
        key: values.get(key, getattr(current, key))
        for key in current.__dataclass_fields__
    }
    return type(current)(**merged)


def load_config(config_path: Path | None = None, env_path: Path | None = None) -> Config:
    """Load configuration from .env and optional YAML config file."""
    env_file = env_path or Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    config = Config()

    if os.environ.get(DATA_DIR_ENV):
        config.data_dir = Path(os.environ[DATA_DIR_ENV]).expanduser()

    yaml_file = config_path or Path("config.yaml")
    if yaml_file.exists():
        with yaml_file.open() as f:
            raw = yaml.safe_load(f) or {}

        for name in ("thresholds", "linking", "store", "cache"):
            if name in raw:
                setattr(config, name, _section(raw, name, getattr(config, name)))

        if "data_dir" in raw:
            config.data_dir = Path(raw["data_dir"]).expanduser()

    if config.linking.title_metric not in ("levenshtein", "jaccard"):
        raise ValueError(f"Unknown title metric: {config.linking.title_metric!r}")
    for name in ("batch_size", "max_links_per_record"):
        if getattr(config.linking, name) < 1:
            raise ValueError(f"linking.{name} must be at least 1")
    if config.linking.delay_ms < 0:
        raise ValueError("linking.delay_ms must not be negative")

    return config
