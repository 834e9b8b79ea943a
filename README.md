# hyperlinkr

The service layer of a URL shortener as a Python library: the pieces that sit
between a web framework and the stores behind it. Everything that talks to a
store is `async`.

## Modules

- `hyperlinkr.config` — `Settings` and its sections `CacheConfig`,
  `StorageConfig`, `RateLimitConfig`, `CodeGenConfig`, `AnalyticsConfig` and
  `SecurityConfig`. Each is a dataclass with defaults and a `validate()` method
  that checks lower and upper bounds, minimum lengths and (for `base_url`) URL
  shape. `Settings.from_mapping(data)` builds settings from nested mappings,
  converting strings to integers and booleans where needed; every field that is
  not optional must be present. `load(environ, config_dir)` starts from
  defaults for the top-level fields, merges `config.<ENVIRONMENT>.toml` from
  `config_dir` if that file exists, then `HYPERLINKR_*` variables (underscores
  split the name into nested keys, so `HYPERLINKR_CACHE_TTL_SECONDS` sets
  `cache.ttl_seconds`), validates the result, checks that every database URL
  starts with `redis://` and sets `RUST_LOG` in `environ` to the configured log
  level. The nested sections have no defaults in `load`, so they must come from
  the file or the environment. Every problem raises `ConfigError`.
- `hyperlinkr.errors` — `AppError` and its subclasses (`NotFound`,
  `BadRequest`, `Conflict`, `Forbidden`, `Unauthorized`, `Expired`,
  `RateLimitExceeded`, `CircuitBreakerOpen`, `InternalError`, ...).
  `to_response()` returns the `(HTTPStatus, body)` pair the error maps to;
  a `RateLimitExceeded` that carries a ready-made response returns that
  response instead.
- `hyperlinkr.clock` — `SystemClock` (current UTC time) and `FixedClock`
  (always the same instant, for tests).
- `hyperlinkr.local_cache` — `LocalCache`, a thread-safe string cache bounded
  by size and time-to-live.
- `hyperlinkr.bloom` — `BloomShard` and `ShardedBloom`, a Bloom filter split
  over 16 shards chosen by key hash.
- `hyperlinkr.circuit_breaker` — `CircuitBreaker` counts failures per node,
  trips a node after `max_failures`, lets it back once the retry interval has
  passed, and hands out a random usable node.
- `hyperlinkr.cache_service` — `KeyValueBackend`, an abstract string store,
  and `CacheService`, which looks a key up in L1, then the Bloom filter, L2,
  the primary backend and finally an optional fallback backend, copying what it
  finds into the faster tiers. It also caches pages of URL listings, warms the
  local tiers from a list of keys, and copies `url:*` keys from the primary to
  the fallback (`flush_to_fallback`, or periodically with `run_flush_loop`).
- `hyperlinkr.rate_limit` — `RequestContext`, `RateLimitBackend` (fixed-window
  counters kept in memory), `RateLimiter` (per-IP, then per-user limits for the
  `shorten` and `redirect` endpoints), `endpoint_for(path)` and
  `rate_limit_response(window)`, the 429 reply with a `Retry-After` header.
- `hyperlinkr.analytics` — `ClickEvent`, `AnalyticsStore` (sorted sets kept
  in memory, with optional expiry) and `AnalyticsService`, which queues clicks
  up to a maximum, writes them in batches to a primary and an optional fallback
  store, answers range queries per short code and restores the primary from the
  fallback when the primary has nothing.

## Installation

```
pip install hyperlinkr
```

## Examples

Settings built from the defaults, changed and validated:

```python
from dataclasses import asdict
from hyperlinkr.config import ConfigError, Settings

data = asdict(Settings())
data["app_port"] = 8080
data["base_url"] = "http://localhost:8080"
settings = Settings.from_mapping(data)
settings.validate()  # raises ConfigError on a bad value
```

Rate limiting a request:

```python
import asyncio
from hyperlinkr.config import Settings
from hyperlinkr.errors import RateLimitExceeded
from hyperlinkr.rate_limit import RateLimitBackend, RateLimiter, RequestContext

async def main():
    limiter = RateLimiter(Settings(), RateLimitBackend())
    context = RequestContext(ip="203.0.113.7")
    try:
        await limiter.enforce("/v1/shorten", context)
    except RateLimitExceeded as exc:
        status, headers, body = exc.to_response()

asyncio.run(main())
```

Recording and reading clicks:

```python
import asyncio
from hyperlinkr.analytics import AnalyticsService, AnalyticsStore

async def main():
    service = AnalyticsService(primary=AnalyticsStore())
    await service.record_click("abc123", "203.0.113.7")
    await service.drain()
    print(await service.get_analytics("abc123", 0, 2**62))

asyncio.run(main())
```

## What this package does not do

It has no HTTP server, routes or request handlers, no user accounts or tokens,
and no short-code generator. It ships no `KeyValueBackend` for a real
database: implement one over the store you run and pass it to
`CacheService.from_settings`. `RateLimitBackend` and `AnalyticsStore` keep
their data in process memory; subclass them to keep it in a shared store.

## Running the tests

```
pip install "hyperlinkr[test]"
pytest
```