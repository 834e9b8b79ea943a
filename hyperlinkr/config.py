"""Service settings: defaults, validation and loading from file and environment."""

import os
import re
import tomllib
import types
from collections.abc import Mapping, MutableMapping
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Union, get_args, get_origin
from urllib.parse import urlsplit


class ConfigError(ValueError):
    """Raised when settings cannot be read or fail validation."""


def _field(default: Any = MISSING, *, factory: Any = None, **rules: Any) -> Any:
    if factory is not None:
        return field(default_factory=factory, metadata=rules)
    return field(default=default, metadata=rules)


_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*:")
_HOST_SCHEMES = {"http", "https", "ws", "wss", "ftp"}


def _is_url(text: str) -> bool:
    if not _SCHEME.match(text):
        return False
    try:
        parts = urlsplit(text)
        parts.port  # noqa: B018 - raises on an invalid port
    except ValueError:
        return False
    if parts.scheme.lower() in _HOST_SCHEMES:
        return bool(parts.hostname)
    return True


def _errors(section: Any, prefix: str = "") -> list[str]:
    problems: list[str] = []
    for spec in fields(section):
        value = getattr(section, spec.name)
        path = f"{prefix}{spec.name}"
        if is_dataclass(value):
            problems.extend(_errors(value, f"{path}."))
            continue
        if value is None:
            continue
        rules = spec.metadata
        if "lo" in rules and value < rules["lo"]:
            problems.append(f"{path}: {value} must be at least {rules['lo']}")
        if "hi" in rules and value > rules["hi"]:
            problems.append(f"{path}: {value} must be at most {rules['hi']}")
        if "min_len" in rules and len(value) < rules["min_len"]:
            problems.append(f"{path}: length must be at least {rules['min_len']}")
        if rules.get("url") and not _is_url(value):
            problems.append(f"{path}: {value!r} is not a valid URL")
    return problems


def _validate(section: Any) -> None:
    problems = _errors(section)
    if problems:
        raise ConfigError("Validation failed: " + "; ".join(problems))


@dataclass
class AnalyticsConfig:
    flush_interval_ms: int = _field(200, lo=100)
    batch_size: int = _field(10_000, lo=1000)
    max_batch_size_ms: int = _field(1_000, lo=1000)
    max_batch_size: int = _field(10_000, lo=1000)
    max_queue_size: int | None = _field(100_000, lo=1000)
    sled_path: str = _field("./data/analytics.sled", min_len=1)

    def validate(self) -> None:
        """Raise ConfigError if any field is out of bounds."""
        _validate(self)


@dataclass
class CacheConfig:
    l1_capacity: int = _field(10_000, lo=1000)
    l2_capacity: int = _field(100_000, lo=10000)
    bloom_bits: int = _field(1_048_576, lo=1048576)
    bloom_expected: int = _field(100_000, lo=1000)
    bloom_shards: int = _field(8, lo=8)
    bloom_block_size: int = _field(128, lo=128)
    redis_pool_size: int = _field(8, lo=8)
    ttl_seconds: int = _field(3_600, lo=60)
    max_failures: int = _field(5, lo=3)
    retry_interval_secs: int = _field(10, lo=10)
    redis_command_timeout_secs: int = _field(1, lo=1)
    redis_max_feed_count: int = _field(200, lo=1)
    redis_broadcast_channel_capacity: int = _field(32, lo=16)
    redis_max_command_attempts: int = _field(3, lo=1)
    redis_connection_timeout_ms: int = _field(10_000, lo=1000)
    redis_reconnect_max_attempts: int = _field(3, lo=1)
    redis_reconnect_delay_ms: int = _field(100, lo=100)
    redis_reconnect_max_delay_ms: int = _field(500, lo=100)
    sled_path: str = _field("/tmp/sled_hyperlinkr", min_len=1)
    sled_cache_bytes: int = _field(64 * 1024 * 1024, lo=16777216)
    sled_flush_ms: int = _field(600_000, lo=60_000, hi=900000)
    sled_snapshot_ttl_secs: int = _field(5, lo=1, hi=3600)
    sled_compression: bool = _field(True)
    use_sled: bool = _field(True)
    geoip_mmdb_path: str = _field("/path/to/GeoLite2-City.mmdb", min_len=1)
    geo_sled_path: str = _field("./data/geo.sled", min_len=1)
    geo_hot_capacity: int = _field(200_000, lo=1)
    geo_ttl_seconds: int = _field(3_600, lo=1)
    geo_evict_interval_secs: int = _field(60, lo=1)

    def validate(self) -> None:
        """Raise ConfigError if any field is out of bounds."""
        _validate(self)


@dataclass
class CodeGenConfig:
    shard_bits: int = _field(12, lo=8, hi=16)
    max_attempts: int = _field(5, lo=3, hi=10)

    def validate(self) -> None:
        """Raise ConfigError if any field is out of bounds."""
        _validate(self)


@dataclass
class RateLimitConfig:
    shorten_requests_per_minute: int = _field(10, lo=1)
    redirect_requests_per_minute: int = _field(1_000, lo=100)
    window_size_seconds: int | None = _field(60, lo=1, hi=3600)

    def validate(self) -> None:
        """Raise ConfigError if any field is out of bounds."""
        _validate(self)


_DEFAULT_JWT_KEY = "placeholder" * 4


@dataclass
class SecurityConfig:
    global_admins: list[str] = _field(factory=list)
    jwt_secret: str = _field(_DEFAULT_JWT_KEY, min_len=32)
    token_expiry_secs: int = _field(3600 * 24, lo=60)
    domain: str = _field("hyperlinkr.cloud", min_len=1)
    subdomains: list[str] = _field(factory=lambda: ["api"], min_len=1)

    def validate(self) -> None:
        """Raise ConfigError if any field is out of bounds."""
        _validate(self)


@dataclass
class StorageConfig:
    sled_path: str = _field("./data/storage.sled", min_len=1)
    sled_cache_bytes: int = _field(67_108_864, lo=1048576)
    sled_flush_ms: int = _field(300_000, lo=1)
    sled_snapshot_ttl_secs: int = _field(5, lo=1)
    sled_compression: bool = _field(True)

    def validate(self) -> None:
        """Raise ConfigError if any field is out of bounds."""
        _validate(self)


_DEFAULT_DATABASE_URLS = (
    "redis://dragonfly1:6379",
    "redis://dragonfly2:6380",
    "redis://dragonfly3:6381",
    "redis://dragonfly4:6382",
)


@dataclass
class Settings:
    environment: str = _field("development", min_len=1)
    database_urls: list[str] = _field(
        factory=lambda: list(_DEFAULT_DATABASE_URLS), min_len=1
    )
    base_url: str = _field("http://localhost:3000", url=True)
    app_port: int = _field(3000, lo=1024, hi=65535)
    rust_log: str = _field("debug", min_len=1)
    cache: CacheConfig = _field(factory=CacheConfig)
    storage: StorageConfig = _field(factory=StorageConfig)
    rate_limit: RateLimitConfig = _field(factory=RateLimitConfig)
    codegen: CodeGenConfig = _field(factory=CodeGenConfig)
    analytics: AnalyticsConfig = _field(factory=AnalyticsConfig)
    security: SecurityConfig = _field(factory=SecurityConfig)

    def validate(self) -> None:
        """Raise ConfigError if any field, nested ones included, is out of bounds."""
        _validate(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        """Build settings from nested mappings; every non-optional field is required."""
        return _build(cls, data, "")


_INT = re.compile(r"^[+-]?\d+$")
_FLOAT = re.compile(
    r"^[+-]?(\d+\.?\d*([eE][+-]?\d+)?|\.\d+([eE][+-]?\d+)?|inf|infinity|nan)$",
    re.IGNORECASE,
)
_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def _is_optional(hint: Any) -> bool:
    return get_origin(hint) in (Union, types.UnionType) and type(None) in get_args(hint)


def _convert(value: Any, hint: Any, path: str) -> Any:
    origin = get_origin(hint)
    if origin in (Union, types.UnionType):
        if value is None:
            return None
        inner = next(arg for arg in get_args(hint) if arg is not type(None))
        return _convert(value, inner, path)
    if origin is list:
        if not isinstance(value, (list, tuple)):
            raise ConfigError(f"{path}: expected a sequence, got {value!r}")
        (item_hint,) = get_args(hint)
        return [
            _convert(item, item_hint, f"{path}[{position}]")
            for position, item in enumerate(value)
        ]
    if is_dataclass(hint):
        return _build(hint, value, f"{path}.")
    if hint is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in _TRUE | _FALSE:
            return value.lower() in _TRUE
        raise ConfigError(f"{path}: expected a boolean, got {value!r}")
    if hint is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str) and _INT.match(value.strip()):
            return int(value.strip())
        raise ConfigError(f"{path}: expected an integer, got {value!r}")
    if hint is str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (str, int, float)):
            return str(value)
        raise ConfigError(f"{path}: expected a string, got {value!r}")
    raise ConfigError(f"{path}: unsupported field type {hint!r}")


def _build(cls: Any, data: Any, prefix: str) -> Any:
    if not isinstance(data, Mapping):
        raise ConfigError(f"{prefix.rstrip('.') or 'settings'}: expected a table")
    values: dict[str, Any] = {}
    for spec in fields(cls):
        path = f"{prefix}{spec.name}"
        hint = spec.type
        if spec.name in data:
            values[spec.name] = _convert(data[spec.name], hint, path)
        elif _is_optional(hint):
            values[spec.name] = None
        else:
            raise ConfigError(f"missing field `{path}`")
    return cls(**values)


def _merge(target: dict[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in source.items():
        key = key.lower()
        if isinstance(value, Mapping):
            existing = target.get(key)
            target[key] = _merge(existing if isinstance(existing, dict) else {}, value)
        else:
            target[key] = value
    return target


def _parse_env_value(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if _INT.match(raw):
        return int(raw)
    if _FLOAT.match(raw):
        return float(raw)
    return raw


_ENV_PREFIX = "hyperlinkr_"


def _environment_source(environ: Mapping[str, str]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for name, raw in environ.items():
        lowered = name.lower()
        if not lowered.startswith(_ENV_PREFIX) or lowered == _ENV_PREFIX:
            continue
        *parents, leaf = lowered[len(_ENV_PREFIX):].split("_")
        node = result
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = _parse_env_value(raw)
    return result


def load(
    environ: MutableMapping[str, str] | None = None,
    config_dir: str | os.PathLike | None = None,
) -> Settings:
    """Load settings from ``config.<ENVIRONMENT>.toml`` and ``HYPERLINKR_*`` variables.

    Top-level fields have defaults; nested sections must come from the sources.
    On success ``RUST_LOG`` in ``environ`` is set to the configured log level.
    """
    env_vars = os.environ if environ is None else environ
    environment = env_vars.get("ENVIRONMENT", "development")
    merged: dict[str, Any] = {
        "environment": environment,
        "database_urls": list(_DEFAULT_DATABASE_URLS),
        "base_url": "http://localhost:3000",
        "app_port": 3000,
        "rust_log": "debug",
    }

    path = Path(config_dir if config_dir is not None else ".") / f"config.{environment}.toml"
    if path.is_file():
        try:
            with path.open("rb") as handle:
                _merge(merged, tomllib.load(handle))
        except (tomllib.TOMLDecodeError, OSError) as exc:
            raise ConfigError(f"{path}: {exc}") from exc
    _merge(merged, _environment_source(env_vars))

    settings = Settings.from_mapping(merged)
    settings.validate()
    for position, url in enumerate(settings.database_urls):
        if not url.startswith("redis://"):
            raise ConfigError(f"Invalid Redis URL[{position}]: {url}")

    env_vars["RUST_LOG"] = settings.rust_log
    return settings