from hyperlinkr.local_cache import LocalCache


class FakeTimer:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_insert_then_get():
    cache = LocalCache(100, 60)
    cache.insert("abc", "https://example.com/a")
    assert cache.get("abc") == "https://example.com/a"


def test_missing_key_gives_none():
    cache = LocalCache(100, 60)
    assert cache.get("nope") is None


def test_insert_replaces_value():
    cache = LocalCache(100, 60)
    cache.insert("k", "one")
    cache.insert("k", "two")
    assert cache.get("k") == "two"
    assert len(cache) == 1


def test_remove():
    cache = LocalCache(100, 60)
    cache.insert("k", "v")
    cache.remove("k")
    assert cache.get("k") is None


def test_remove_missing_key_is_harmless():
    cache = LocalCache(100, 60)
    cache.insert("k", "v")
    cache.remove("other")
    assert cache.get("k") == "v"


def test_entries_expire_after_ttl():
    timer = FakeTimer()
    cache = LocalCache(100, 60, timer=timer)
    cache.insert("k", "v")
    timer.now = 30.0
    assert cache.get("k") == "v"
    timer.now = 61.0
    assert cache.get("k") is None


def test_capacity_bounds_size():
    cache = LocalCache(10, 60)
    for number in range(25):
        cache.insert(f"key{number}", f"value{number}")
    assert len(cache) <= 10
    assert cache.get("key24") == "value24"


def test_hits_counted_only_on_hit():
    cache = LocalCache(100, 60)
    cache.insert("k", "v")
    cache.get("k")
    cache.get("missing")
    cache.get("k")
    assert cache.hits == 2