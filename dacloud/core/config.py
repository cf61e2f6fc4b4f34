"""Client settings loading and validation for YAML settings files."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from dacloud.core.endpoint_cache import DEFAULT_LIFETIME_MINUTES
from dacloud.core.errors import ConfigError
from dacloud.core.model import DEFAULT_ENDPOINTS, DEFAULT_PATH, Endpoint

CONFIG_FILE_NAME = "config.yaml"
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class Settings:
    licence_key: str = ""
    endpoints: tuple[Endpoint, ...] = DEFAULT_ENDPOINTS
    auto_ranking: bool = True
    ranking_lifetime: int = DEFAULT_LIFETIME_MINUTES
    ranking_requests: int = 3
    ranking_max_failures: int = 1
    timeout_s: int = 3
    use_cache: bool = True
    use_client_cookie: bool = True
    send_extra_headers: bool = False
    cache_directory: str | None = None
    proxy: str | None = None


def _load_schema_validator() -> Any:
    schema_text = resources.files("dacloud.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "dacloud" / CONFIG_FILE_NAME


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not read settings file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Settings file {path} must contain a mapping at root")
    return loaded


def _build_endpoint(doc: dict[str, Any]) -> Endpoint:
    return Endpoint(
        host=doc["host"].rstrip("/"),
        port=str(doc.get("port", 80)),
        path=doc.get("path", DEFAULT_PATH),
    )


def build_settings(doc: dict[str, Any], source: Path | str = "<settings>") -> Settings:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    defaults = Settings()
    endpoints = defaults.endpoints
    if "endpoints" in doc:
        endpoints = tuple(_build_endpoint(item) for item in doc["endpoints"])

    return Settings(
        licence_key=doc.get("licence_key", defaults.licence_key),
        endpoints=endpoints,
        auto_ranking=doc.get("auto_ranking", defaults.auto_ranking),
        ranking_lifetime=doc.get("ranking_lifetime", defaults.ranking_lifetime),
        ranking_requests=doc.get("ranking_requests", defaults.ranking_requests),
        ranking_max_failures=doc.get("ranking_max_failures", defaults.ranking_max_failures),
        timeout_s=doc.get("timeout_s", defaults.timeout_s),
        use_cache=doc.get("use_cache", defaults.use_cache),
        use_client_cookie=doc.get("use_client_cookie", defaults.use_client_cookie),
        send_extra_headers=doc.get("send_extra_headers", defaults.send_extra_headers),
        cache_directory=doc.get("cache_directory", defaults.cache_directory),
        proxy=doc.get("proxy", defaults.proxy),
    )


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from ``path`` or the default location.

    A missing file at the default location yields default settings; an
    explicitly given path must exist.
    """
    if path is None:
        path = default_config_path()
        if not path.exists():
            LOGGER.debug("No settings file at %s, using defaults", path)
            return Settings()
    return build_settings(_read_yaml(path), path)
