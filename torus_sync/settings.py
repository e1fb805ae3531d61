# settings.py
"""
YAML-backed settings for torus-sync.

load_settings() reads sync.yaml (the packaged default or --config), applies
environment overrides and validates every value. Anything wrong raises
ConfigError; the CLI turns that into exit code 2.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional

import yaml

from .adapters import DEFAULT_SOURCES, EVENT_REGISTRY
from .errors import ConfigError
from .protocol_day import DEFAULT_EPOCH_ISO, parse_epoch

DEFAULT_CONFIG_PATH = Path(__file__).with_name("sync.yaml")

ENV_RPC_URLS = "TORUS_SYNC_RPC_URLS"
ENV_CACHE_PATH = "TORUS_SYNC_CACHE_PATH"
ENV_TIMEOUT_SEC = "TORUS_SYNC_TIMEOUT_SEC"


@dataclass
class RpcSettings:
    endpoints: List[str] = field(default_factory=list)
    probe_timeout_sec: float = 5.0
    request_timeout_sec: float = 30.0
    calls_per_second: Optional[float] = None
    probe_ttl_sec: float = 30.0


@dataclass
class FetchSettings:
    max_range_per_call: int = 2000
    max_attempts: int = 5
    concurrency: int = 1
    allow_gaps: bool = False


@dataclass
class TimestampSettings:
    batch_size: int = 10
    max_attempts: int = 3


@dataclass
class CacheSettings:
    path: Path = Path("public/data/cached-data.json")
    backup_dir: Optional[Path] = None
    backup: bool = True
    keep_backups: Optional[int] = 20


@dataclass
class SourceSettings:
    name: str
    address: str
    events: List[str]


@dataclass
class Settings:
    protocol_name: str = "TORUS"
    epoch_start: int = parse_epoch(DEFAULT_EPOCH_ISO)
    deployment_block: int = 0
    rpc: RpcSettings = field(default_factory=RpcSettings)
    fetch: FetchSettings = field(default_factory=FetchSettings)
    timestamps: TimestampSettings = field(default_factory=TimestampSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    timeout_sec: Optional[float] = 1800.0
    sources: List[SourceSettings] = field(default_factory=list)
    config_path: Optional[Path] = None


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{key}' must be a mapping")
    return value


def _int(section: str, raw: Mapping[str, Any], key: str, default: int, minimum: int = 1) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(f"{section}.{key} must be an integer, got {value!r}")
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{key} must be an integer, got {value!r}") from None
    if value < minimum:
        raise ConfigError(f"{section}.{key} must be >= {minimum}, got {value}")
    return value


def _float(section: str, raw: Mapping[str, Any], key: str, default: Optional[float], allow_none: bool = False) -> Optional[float]:
    value = raw.get(key, default)
    if value is None:
        if allow_none:
            return None
        raise ConfigError(f"{section}.{key} is required")
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}") from None
    if value <= 0:
        if allow_none:
            return None
        raise ConfigError(f"{section}.{key} must be > 0, got {value}")
    return value


def _bool(section: str, raw: Mapping[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{section}.{key} must be true or false, got {value!r}")
    return value


def _parse_sources(raw: Mapping[str, Any]) -> List[SourceSettings]:
    sources = []
    for name, spec in raw.items():
        if not isinstance(spec, Mapping):
            raise ConfigError(f"sources.{name} must be a mapping")
        address = spec.get("address")
        if not isinstance(address, str) or not address.startswith("0x") or len(address) != 42:
            raise ConfigError(f"sources.{name}.address is not a 20-byte hex address: {address!r}")
        events = spec.get("events") or []
        if not isinstance(events, list) or not events:
            raise ConfigError(f"sources.{name}.events must be a non-empty list")
        unknown = [e for e in events if e not in EVENT_REGISTRY]
        if unknown:
            raise ConfigError(f"sources.{name}: unknown event(s) {unknown}; known: {sorted(EVENT_REGISTRY)}")
        sources.append(SourceSettings(name=str(name), address=address, events=[str(e) for e in events]))
    return sources


def parse_settings(raw: Mapping[str, Any], env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from an already-loaded YAML mapping plus env overrides."""
    if not isinstance(raw, Mapping):
        raise ConfigError("settings file must contain a mapping at the top level")
    env = os.environ if env is None else env

    protocol = _section(raw, "protocol")
    rpc = _section(raw, "rpc")
    fetch = _section(raw, "fetch")
    ts = _section(raw, "timestamps")
    cache = _section(raw, "cache")
    run = _section(raw, "run")

    try:
        epoch = parse_epoch(protocol.get("epoch_start", DEFAULT_EPOCH_ISO))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"protocol.epoch_start: {e}") from e

    endpoints = rpc.get("endpoints") or []
    if env.get(ENV_RPC_URLS):
        endpoints = [u.strip() for u in env[ENV_RPC_URLS].split(",") if u.strip()]
    if not isinstance(endpoints, list) or not all(isinstance(u, str) for u in endpoints):
        raise ConfigError("rpc.endpoints must be a list of URLs")
    if not endpoints:
        raise ConfigError(f"no RPC endpoints configured (rpc.endpoints or ${ENV_RPC_URLS})")

    cache_path = env.get(ENV_CACHE_PATH) or cache.get("path")
    if not cache_path:
        raise ConfigError(f"cache.path is required (or ${ENV_CACHE_PATH})")
    backup_dir = cache.get("backup_dir")
    keep = cache.get("keep_backups", 20)

    run_raw = dict(run)
    if env.get(ENV_TIMEOUT_SEC):
        run_raw["timeout_sec"] = env[ENV_TIMEOUT_SEC]

    return Settings(
        protocol_name=str(protocol.get("name", "TORUS")),
        epoch_start=epoch,
        deployment_block=_int("protocol", protocol, "deployment_block", 0, minimum=0),
        rpc=RpcSettings(
            endpoints=list(endpoints),
            probe_timeout_sec=_float("rpc", rpc, "probe_timeout_sec", 5.0),
            request_timeout_sec=_float("rpc", rpc, "request_timeout_sec", 30.0),
            calls_per_second=_float("rpc", rpc, "calls_per_second", None, allow_none=True),
            probe_ttl_sec=_float("rpc", rpc, "probe_ttl_sec", 30.0, allow_none=True) or 0.0,
        ),
        fetch=FetchSettings(
            max_range_per_call=_int("fetch", fetch, "max_range_per_call", 2000),
            max_attempts=_int("fetch", fetch, "max_attempts", 5),
            concurrency=_int("fetch", fetch, "concurrency", 1),
            allow_gaps=_bool("fetch", fetch, "allow_gaps", False),
        ),
        timestamps=TimestampSettings(
            batch_size=_int("timestamps", ts, "batch_size", 10),
            max_attempts=_int("timestamps", ts, "max_attempts", 3),
        ),
        cache=CacheSettings(
            path=Path(cache_path),
            backup_dir=Path(backup_dir) if backup_dir else None,
            backup=_bool("cache", cache, "backup", True),
            keep_backups=None if keep is None else _int("cache", cache, "keep_backups", 20, minimum=0),
        ),
        timeout_sec=_float("run", run_raw, "timeout_sec", 1800.0, allow_none=True),
        sources=_parse_sources(_section(raw, "sources") if "sources" in raw else DEFAULT_SOURCES),
    )


def load_settings(path: Optional[os.PathLike] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    cfg_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if not cfg_path.exists():
        raise ConfigError(f"config file not found: {cfg_path}")
    try:
        with open(cfg_path, "r") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse {cfg_path}: {e}") from e
    settings = parse_settings(raw, env=env)
    if not settings.sources:
        raise ConfigError(f"{cfg_path}: no sources configured")
    settings.config_path = cfg_path
    return settings
