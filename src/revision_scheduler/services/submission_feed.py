"""
# Submission Feed Client

Read-only client for LeetCode's public GraphQL API, used to learn which problems
a user has recently solved and to look up problem details.

## Caching

Responses are memoized per client instance in a `QueryCache` keyed by a
fingerprint of the query and its variables. Entries expire after the injected
TTL; when the cache is full the oldest entries are evicted first. A TTL of 0
disables caching.

## Failure Model

Timeouts, transport errors, non-2xx responses, GraphQL errors and undecodable
bodies all raise `ExternalFeedUnavailable`. Callers decide whether that is fatal.
"""

import json
import re
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from revision_scheduler.config import settings
from revision_scheduler.exceptions import ExternalFeedUnavailable
from revision_scheduler.managers.logging_manager import get_logger

logger = get_logger(prefix="[SubmissionFeed]")

RECENT_ACCEPTED_QUERY = """
query recentAcSubmissions($username: String!, $limit: Int!) {
  recentAcSubmissionList(username: $username, limit: $limit) {
    id
    title
    titleSlug
    timestamp
  }
}
"""

QUESTION_DETAILS_QUERY = """
query questionDetails($titleSlug: String!) {
  question(titleSlug: $titleSlug) {
    title
    titleSlug
    difficulty
    topicTags {
      name
      slug
    }
  }
}
"""

_SLUG_PATTERNS = (
    re.compile(r"leetcode\.com/problems/([^/?#]+)", re.IGNORECASE),
    re.compile(r"/problems/([^/?#]+)", re.IGNORECASE),
)


def normalize_leetcode_slug(value: Any) -> str:
    """Accept `two-sum`, `/problems/two-sum/` or a full problem URL; return `two-sum`."""
    s = str(value or "").strip()
    if not s:
        return ""
    for pattern in _SLUG_PATTERNS:
        match = pattern.search(s)
        if match:
            s = match.group(1)
            break
    return s.strip("/")


class QueryCache:
    """TTL cache keyed by query fingerprint, bounded in size."""

    def __init__(self, ttl_seconds: float, max_entries: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()

    @staticmethod
    def fingerprint(query: str, variables: Optional[Dict[str, Any]]) -> str:
        return json.dumps({"query": query, "variables": variables or {}}, sort_keys=True, default=str)

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries.pop(key, None)
        self._entries[key] = (self._clock() + self.ttl_seconds, value)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class LeetCodeClient:
    """Async GraphQL client for recent accepted submissions and question details."""

    def __init__(
        self,
        graphql_url: Optional[str] = None,
        timeout: Optional[float] = None,
        cache: Optional[QueryCache] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.graphql_url = graphql_url or settings.LEETCODE_GRAPHQL_URL
        self.timeout = timeout if timeout is not None else settings.LEETCODE_TIMEOUT_SECONDS
        self.cache = cache or QueryCache(settings.LEETCODE_CACHE_TTL_SECONDS, settings.LEETCODE_CACHE_MAX_ENTRIES)
        self.user_agent = user_agent or settings.LEETCODE_USER_AGENT
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "content-type": "application/json",
            "accept": "application/json",
            "user-agent": self.user_agent,
            "referer": "https://leetcode.com/",
            "origin": "https://leetcode.com",
        }

    async def graphql(self, query: str, variables: Dict[str, Any], skip_cache: bool = False) -> Dict[str, Any]:
        """
        POST a GraphQL query and return its `data` object.

        Raises:
            ExternalFeedUnavailable: On any transport, HTTP or GraphQL failure.
        """
        cache_key = self.cache.fingerprint(query, variables)
        if not skip_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Cache hit for %s", variables)
                return cached

        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.graphql_url, json={"query": query, "variables": variables}, headers=self._headers()
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as e:
            logger.warning("LeetCode request timed out after %.1fs", self.timeout)
            raise ExternalFeedUnavailable(f"LeetCode request timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("LeetCode GraphQL HTTP %d", status)
            raise ExternalFeedUnavailable(f"LeetCode GraphQL HTTP {status}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("LeetCode request failed: %s", e)
            raise ExternalFeedUnavailable(f"LeetCode request failed: {e}") from e

        if not isinstance(payload, dict):
            raise ExternalFeedUnavailable("LeetCode GraphQL returned a non-object payload")
        errors = payload.get("errors")
        if errors:
            message = "; ".join(str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors)
            logger.warning("LeetCode GraphQL error: %s", message)
            raise ExternalFeedUnavailable(f"LeetCode GraphQL error: {message}")

        data = payload.get("data") or {}
        logger.debug("LeetCode GraphQL call completed in %.3fs", time.time() - start_time)
        self.cache.set(cache_key, data)
        return data

    async def fetch_recent_accepted(self, username: str, limit: int) -> List[Dict[str, Any]]:
        """
        Recent accepted submissions for `username`.

        Returns:
            `[{"problem_ref", "accepted_at_epoch_seconds", "title"}]`. Entries are
            passed through leniently; consumers drop malformed ones.
        """
        if not username:
            raise ExternalFeedUnavailable("username is required")
        data = await self.graphql(RECENT_ACCEPTED_QUERY, {"username": username, "limit": limit})
        raw = data.get("recentAcSubmissionList") or []
        if not isinstance(raw, list):
            raise ExternalFeedUnavailable("recentAcSubmissionList is not a list")

        submissions = []
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            submissions.append(
                {
                    "problem_ref": entry.get("titleSlug"),
                    "accepted_at_epoch_seconds": entry.get("timestamp"),
                    "title": entry.get("title"),
                }
            )
        logger.info("Fetched %d accepted submissions for %s", len(submissions), username)
        return submissions

    async def fetch_question_details(self, slug: str) -> Optional[Dict[str, Any]]:
        """Title, difficulty and tag slugs for a problem, or `None` if it does not exist."""
        if not slug:
            raise ExternalFeedUnavailable("slug is required")
        data = await self.graphql(QUESTION_DETAILS_QUERY, {"titleSlug": slug})
        question = data.get("question")
        if not question:
            return None
        tags = [t.get("slug") or t.get("name") for t in question.get("topicTags") or [] if isinstance(t, dict)]
        return {
            "title": question.get("title") or slug,
            "title_slug": question.get("titleSlug") or slug,
            "difficulty": question.get("difficulty"),
            "tags": [t for t in tags if t],
        }
