from marvel_catalog.core.query_cache import QueryCache


def test_hit_after_set():
    cache = QueryCache()
    cache.set("list", "comics", ["page"], page=1, per_page=20)

    assert cache.get("list", "comics", page=1, per_page=20) == ["page"]
    assert cache.get("list", "comics", page=2, per_page=20) is None
    assert cache.stats()["hits"] == 1
    assert cache.stats()["misses"] == 1


def test_query_key_ignores_case_and_whitespace():
    cache = QueryCache()
    cache.set("search", "comics", "result", query="Spider-Man ")

    assert cache.get("search", "comics", query="spider-man") == "result"


def test_expired_entry_is_a_miss():
    cache = QueryCache()
    cache.set("search", "series", "stale", ttl_seconds=-1, query="hulk")

    assert cache.get("search", "series", query="hulk") is None
    assert len(cache) == 0


def test_least_recently_used_is_evicted():
    cache = QueryCache(max_size=2)
    cache.set("list", "comics", "a", page=1)
    cache.set("list", "comics", "b", page=2)
    cache.get("list", "comics", page=1)
    cache.set("list", "comics", "c", page=3)

    assert cache.get("list", "comics", page=2) is None
    assert cache.get("list", "comics", page=1) == "a"
    assert cache.stats()["evictions"] == 1


def test_clear():
    cache = QueryCache()
    cache.set("list", "characters", "x", page=1)
    cache.clear()
    assert len(cache) == 0
