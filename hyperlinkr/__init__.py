"""Settings, tiered caching, Bloom filtering, circuit breaking, rate limiting
and click analytics for a URL shortener."""

__version__ = "0.1.0"