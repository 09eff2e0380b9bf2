import json

import httpx
import pytest

from revision_scheduler.exceptions import ExternalFeedUnavailable
from revision_scheduler.services.submission_feed import LeetCodeClient, QueryCache, normalize_leetcode_slug

GRAPHQL_URL = "https://leetcode.test/graphql"


class FakeTime:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


def _client(handler, cache=None):
    return LeetCodeClient(
        graphql_url=GRAPHQL_URL,
        timeout=2,
        cache=cache or QueryCache(ttl_seconds=10, max_entries=10),
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.parametrize(
    "value,expected",
    [
        ("two-sum", "two-sum"),
        ("  two-sum/ ", "two-sum"),
        ("https://leetcode.com/problems/two-sum/description/", "two-sum"),
        ("https://LeetCode.com/problems/two-sum?envType=daily", "two-sum"),
        ("/problems/lru-cache/", "lru-cache"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_leetcode_slug(value, expected):
    assert normalize_leetcode_slug(value) == expected


def test_query_cache_expires_entries():
    now = FakeTime()
    cache = QueryCache(ttl_seconds=10, max_entries=5, clock=now)
    cache.set("k", {"v": 1})

    now.value += 9.9
    assert cache.get("k") == {"v": 1}
    now.value += 0.1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_query_cache_evicts_oldest_when_full():
    cache = QueryCache(ttl_seconds=10, max_entries=2, clock=FakeTime())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_query_cache_zero_ttl_disables_caching():
    cache = QueryCache(ttl_seconds=0, max_entries=2)
    cache.set("a", 1)

    assert len(cache) == 0


def test_fingerprint_ignores_variable_order():
    assert QueryCache.fingerprint("q", {"a": 1, "b": 2}) == QueryCache.fingerprint("q", {"b": 2, "a": 1})
    assert QueryCache.fingerprint("q", {"a": 1}) != QueryCache.fingerprint("q", {"a": 2})


@pytest.mark.asyncio
async def test_fetch_recent_accepted_maps_submissions():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body["variables"])
        return httpx.Response(
            200,
            json={
                "data": {
                    "recentAcSubmissionList": [
                        {"id": "1", "title": "Two Sum", "titleSlug": "two-sum", "timestamp": "1704852000"},
                        "junk",
                    ]
                }
            },
        )

    submissions = await _client(handler).fetch_recent_accepted("alice_codes", 20)

    assert seen == [{"username": "alice_codes", "limit": 20}]
    assert submissions == [
        {"problem_ref": "two-sum", "accepted_at_epoch_seconds": "1704852000", "title": "Two Sum"}
    ]


@pytest.mark.asyncio
async def test_responses_are_cached_per_query():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"data": {"recentAcSubmissionList": []}})

    client = _client(handler)
    await client.fetch_recent_accepted("alice_codes", 20)
    await client.fetch_recent_accepted("alice_codes", 20)
    await client.fetch_recent_accepted("bob", 20)

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_fetch_question_details():
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["variables"] == {"titleSlug": "lru-cache"}
        return httpx.Response(
            200,
            json={
                "data": {
                    "question": {
                        "title": "LRU Cache",
                        "titleSlug": "lru-cache",
                        "difficulty": "Medium",
                        "topicTags": [{"name": "Hash Table", "slug": "hash-table"}, {"name": "Design", "slug": ""}],
                    }
                }
            },
        )

    details = await _client(handler).fetch_question_details("lru-cache")

    assert details == {
        "title": "LRU Cache",
        "title_slug": "lru-cache",
        "difficulty": "Medium",
        "tags": ["hash-table", "Design"],
    }


@pytest.mark.asyncio
async def test_unknown_question_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"question": None}})

    assert await _client(handler).fetch_question_details("no-such-problem") is None


@pytest.mark.asyncio
async def test_http_errors_raise_feed_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": "rate limited"})

    with pytest.raises(ExternalFeedUnavailable, match="429"):
        await _client(handler).fetch_recent_accepted("alice_codes", 20)


@pytest.mark.asyncio
async def test_graphql_errors_raise_feed_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"errors": [{"message": "User matching query does not exist."}]})

    with pytest.raises(ExternalFeedUnavailable, match="does not exist"):
        await _client(handler).fetch_recent_accepted("ghost", 20)


@pytest.mark.asyncio
async def test_undecodable_body_raises_feed_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>captcha</html>")

    with pytest.raises(ExternalFeedUnavailable):
        await _client(handler).fetch_recent_accepted("alice_codes", 20)


@pytest.mark.asyncio
async def test_transport_timeout_raises_feed_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ExternalFeedUnavailable, match="timed out"):
        await _client(handler).fetch_recent_accepted("alice_codes", 20)
