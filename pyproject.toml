[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hyperlinkr"
version = "0.1.0"
description = "Service layer for a URL shortener: settings, tiered caching, Bloom filtering, circuit breaking, rate limiting and click analytics"
requires-python = ">=3.11"
keywords = ["url-shortener", "cache", "bloom-filter", "circuit-breaker", "rate-limit", "analytics"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
]
dependencies = [
    "cachetools>=5.3",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[tool.hatch.build.targets.wheel]
packages = ["hyperlinkr"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
