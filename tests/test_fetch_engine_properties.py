"""
Property-based tests for the Fetch Engine module.

Uses Hypothesis for property-based testing to verify correctness properties
defined in the design document. HTTP is faked with httpx.MockTransport.
"""

import asyncio
import random
from collections import Counter
from typing import Callable, Optional

import httpx
from hypothesis import given, settings
from hypothesis import strategies as st

from clan_manager.config import ApiKey, FetchConfig, RetryConfig
from clan_manager.enums import FetchStatus
from clan_manager.exceptions import KeyPoolExhaustedError, RetryExhaustedError
from clan_manager.fetch_engine import FetchContext, FetchEngine
from clan_manager.key_pool import KeyPool
from clan_manager.models import FetchResult

BASE = "https://api.test/v1"


async def no_sleep(_seconds: float) -> None:
    return None


class FirstChoice(random.Random):
    """Always picks the first active key."""

    def choice(self, seq):
        return seq[0]


class ExhaustingPool(KeyPool):
    """Runs dry after ``limit`` key choices."""

    def __init__(self, keys, limit: int) -> None:
        super().__init__(keys, rng=FirstChoice())
        self._limit = limit
        self.choices = 0

    def choose(self) -> ApiKey:
        self.choices += 1
        if self.choices > self._limit:
            self._active = ()
        return super().choose()


def make_keys(count: int) -> list[ApiKey]:
    return [ApiKey(name=f"CRK{i + 1}", value=f"token-{i + 1}") for i in range(count)]


def run_batches(
    handler: Callable[[httpx.Request], httpx.Response],
    batches: list[list[str]],
    keys: Optional[list[ApiKey]] = None,
    max_fetches: int = 400,
    batch_size: int = 10,
    max_attempts: int = 3,
    rng: Optional[random.Random] = None,
) -> tuple[list[list[FetchResult]], FetchContext]:
    """Run several fetch_batch calls on one context."""
    context = FetchContext.create(keys or make_keys(2), max_fetches, rng=rng or random.Random(0))

    async def run_test() -> list[list[FetchResult]]:
        engine = FetchEngine(
            context,
            FetchConfig(api_base=BASE, batch_size=batch_size, batch_pause_seconds=0.0),
            RetryConfig(max_attempts=max_attempts, base_delay_seconds=0.0),
            transport=httpx.MockTransport(handler),
            sleep=no_sleep,
        )
        async with engine:
            return [await engine.fetch_batch(urls) for urls in batches]

    return asyncio.run(run_test()), context


# Strategies for generating test data

@st.composite
def url_list_strategy(draw) -> list[str]:
    """Generate URL lists with duplicates drawn from a small pool."""
    ids = draw(st.lists(st.integers(min_value=0, max_value=15), min_size=0, max_size=40))
    return [f"{BASE}/items/{i}" for i in ids]


class TestPositionalAlignmentProperty:
    """
    Property-based tests for result alignment.

    **Feature: clan-manager, Property 1: fetch_batch output aligns with input**
    """

    @given(urls=url_list_strategy(), batch_size=st.integers(min_value=1, max_value=12))
    @settings(max_examples=100, deadline=None)
    def test_output_length_and_duplicates(self, urls: list[str], batch_size: int) -> None:
        """
        Property 1: fetch_batch output aligns with input.

        *For any* URL list, the output SHALL have the same length as the input,
        position i SHALL answer URL i, and duplicate URLs SHALL receive
        identical results.

        **Feature: clan-manager, Property 1: fetch_batch output aligns with input**
        """
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"path": request.url.path})

        (results,), _ = run_batches(handler, [urls], batch_size=batch_size)

        assert len(results) == len(urls)
        for url, result in zip(urls, results):
            assert result.url == url
            assert result.status == FetchStatus.OK
            assert result.payload == {"path": url[len("https://api.test"):]}

        by_url: dict[str, FetchResult] = {}
        for url, result in zip(urls, results):
            if url in by_url:
                assert by_url[url] == result
            by_url[url] = result

    @given(urls=url_list_strategy())
    @settings(max_examples=100, deadline=None)
    def test_each_unique_url_fetched_once(self, urls: list[str]) -> None:
        """
        Property 1b: Identical URLs are requested once.

        *For any* URL list fetched twice on one context, every unique URL
        SHALL reach the network exactly once.

        **Feature: clan-manager, Property 1: fetch_batch output aligns with input**
        """
        calls: Counter = Counter()

        def handler(request: httpx.Request) -> httpx.Response:
            calls[request.url.path] += 1
            return httpx.Response(200, json={})

        (first, second), context = run_batches(handler, [urls, urls])

        assert first == second
        assert all(count == 1 for count in calls.values())
        assert len(calls) == len(set(urls))
        assert context.fetch_count == len(set(urls))


class TestKeyBanProperty:
    """
    Property-based tests for key banning.

    **Feature: clan-manager, Property 2: A rejected key is never reused in the run**
    """

    def test_403_key_not_reused_across_batches(self) -> None:
        """
        Property 2: A rejected key is never reused in the run.

        A key answered with 403 SHALL be removed from the pool and SHALL NOT
        authorize any later request of the same run, even in unrelated batches.

        **Feature: clan-manager, Property 2: A rejected key is never reused in the run**
        """
        keys = [ApiKey(name="CRK1", value="bad"), ApiKey(name="CRK2", value="good")]
        used: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            token = request.headers["Authorization"].removeprefix("Bearer ")
            used.append(token)
            if token == "bad":
                return httpx.Response(403, json={"reason": "accessDenied"})
            return httpx.Response(200, json={"ok": True})

        first_batch = [f"{BASE}/items/{i}" for i in range(3)]
        second_batch = [f"{BASE}/other/{i}" for i in range(5)]

        (first, second), context = run_batches(
            handler, [first_batch, second_batch], keys=keys, rng=FirstChoice()
        )

        assert all(r.status == FetchStatus.OK for r in first + second)
        assert "CRK1" in context.key_pool.banned
        assert [k.name for k in context.key_pool.active] == ["CRK2"]

        assert used.count("bad") <= len(first_batch)
        assert used[-len(second_batch):] == ["good"] * len(second_batch)

    @given(seed=st.integers(min_value=0, max_value=10_000), size=st.integers(min_value=1, max_value=20))
    @settings(max_examples=100, deadline=None)
    def test_banned_key_absent_after_ban(self, seed: int, size: int) -> None:
        """
        Property 2b: Bans are permanent for the run.

        *For any* random key choice, once a batch has banned a key, no
        request of a later batch SHALL carry it.

        **Feature: clan-manager, Property 2: A rejected key is never reused in the run**
        """
        keys = [ApiKey(name="CRK1", value="bad"), ApiKey(name="CRK2", value="good"), ApiKey(name="CRK3", value="fine")]
        batches_used: list[list[str]] = [[], []]
        current = {"batch": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            token = request.headers["Authorization"].removeprefix("Bearer ")
            batches_used[current["batch"]].append(token)
            if token == "bad":
                return httpx.Response(403)
            return httpx.Response(200, json={})

        context = FetchContext.create(keys, 400, rng=random.Random(seed))

        async def run_test() -> None:
            engine = FetchEngine(
                context,
                FetchConfig(api_base=BASE, batch_pause_seconds=0.0),
                RetryConfig(max_attempts=3, base_delay_seconds=0.0),
                transport=httpx.MockTransport(handler),
                sleep=no_sleep,
            )
            async with engine:
                await engine.fetch_batch([f"{BASE}/a/{i}" for i in range(size)])
                current["batch"] = 1
                await engine.fetch_batch([f"{BASE}/b/{i}" for i in range(size)])

        asyncio.run(run_test())

        if "bad" in batches_used[0]:
            assert "CRK1" in context.key_pool.banned
            assert "bad" not in batches_used[1]


class TestBudgetProperty:
    """
    Property-based tests for the per-run fetch budget.

    **Feature: clan-manager, Property 3: The fetch budget is never exceeded**
    """

    @given(
        count=st.integers(min_value=0, max_value=30),
        budget=st.integers(min_value=0, max_value=30),
    )
    @settings(max_examples=100, deadline=None)
    def test_budget_limits_network_calls(self, count: int, budget: int) -> None:
        """
        Property 3: The fetch budget is never exceeded.

        *For any* number of new URLs and budget, at most ``budget`` requests
        SHALL be made; URLs beyond it SHALL be BUDGET_EXCEEDED and not cached.

        **Feature: clan-manager, Property 3: The fetch budget is never exceeded**
        """
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(200, json={})

        urls = [f"{BASE}/items/{i}" for i in range(count)]
        (results,), context = run_batches(handler, [urls], max_fetches=budget)

        assert len(calls) == min(count, budget)
        statuses = [r.status for r in results]
        assert statuses == [FetchStatus.OK] * min(count, budget) + [FetchStatus.BUDGET_EXCEEDED] * max(0, count - budget)
        assert all(url not in context.cache for url, r in zip(urls, results) if r.status == FetchStatus.BUDGET_EXCEEDED)
        assert context.budget_remaining == max(0, budget - count)


class TestFailureClassificationProperty:
    """
    Property-based tests for status classification and retry behaviour.

    **Feature: clan-manager, Property 4: Failures are classified and retried correctly**
    """

    @given(attempts=st.integers(min_value=1, max_value=5), status=st.sampled_from([500, 502, 503]))
    @settings(max_examples=100, deadline=None)
    def test_server_errors_exhaust_retries(self, attempts: int, status: int) -> None:
        """
        Property 4: Server errors are retried up to the attempt limit.

        *For any* attempt limit, a URL answering 5xx SHALL be requested exactly
        that many times and the call SHALL raise RetryExhaustedError.

        **Feature: clan-manager, Property 4: Failures are classified and retried correctly**
        """
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(status)

        try:
            run_batches(handler, [[f"{BASE}/items/1"]], max_attempts=attempts)
            assert False, "Expected RetryExhaustedError"
        except RetryExhaustedError as e:
            assert e.code == "retry_exhausted"
            assert e.details["attempts"] == attempts

        assert len(calls) == attempts

    def test_transient_error_recovers(self) -> None:
        """
        Property 4b: A URL that recovers within the attempt limit succeeds.

        **Feature: clan-manager, Property 4: Failures are classified and retried correctly**
        """
        calls: Counter = Counter()

        def handler(request: httpx.Request) -> httpx.Response:
            calls[request.url.path] += 1
            if request.url.path.endswith("/flaky") and calls[request.url.path] < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"n": calls[request.url.path]})

        urls = [f"{BASE}/items/flaky", f"{BASE}/items/steady"]
        (results,), _ = run_batches(handler, [urls], max_attempts=3)

        assert [r.status for r in results] == [FetchStatus.OK, FetchStatus.OK]
        assert results[0].payload == {"n": 3}
        assert calls["/v1/items/steady"] == 1

    def test_not_found_is_cached_and_not_retried(self) -> None:
        """
        Property 4c: 404 is a valid, cached "not found" result.

        **Feature: clan-manager, Property 4: Failures are classified and retried correctly**
        """
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(404, json={"reason": "notFound"})

        url = f"{BASE}/players/%23PY"
        (first, second), context = run_batches(handler, [[url], [url]])

        assert first[0].status == FetchStatus.NOT_FOUND
        assert first[0].payload is None
        assert second[0] == first[0]
        assert len(calls) == 1
        assert url in context.cache

    def test_client_error_not_retried_or_cached(self) -> None:
        """
        Property 4d: Other 4xx answers are returned as CLIENT_ERROR without retry.

        **Feature: clan-manager, Property 4: Failures are classified and retried correctly**
        """
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(400, json={"reason": "badRequest"})

        url = f"{BASE}/tournaments?name=a"
        (results,), context = run_batches(handler, [[url]])

        assert results[0].status == FetchStatus.CLIENT_ERROR
        assert results[0].http_status_code == 400
        assert len(calls) == 1
        assert url not in context.cache

    def test_malformed_json_is_retried(self) -> None:
        """
        Property 4e: A 200 with an unparseable body counts as a server error.

        **Feature: clan-manager, Property 4: Failures are classified and retried correctly**
        """
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(200, content=b"<html>oops</html>")

        try:
            run_batches(handler, [[f"{BASE}/items/1"]], max_attempts=2)
            assert False, "Expected RetryExhaustedError"
        except RetryExhaustedError:
            pass

        assert len(calls) == 2

    @given(key_count=st.integers(min_value=1, max_value=5), status=st.sampled_from([403, 429]))
    @settings(max_examples=100, deadline=None)
    def test_all_keys_rejected_exhausts_pool(self, key_count: int, status: int) -> None:
        """
        Property 4f: Losing every key aborts the call.

        *For any* number of keys all answered with 403 or 429, the call SHALL
        raise KeyPoolExhaustedError and every key SHALL be banned.

        **Feature: clan-manager, Property 4: Failures are classified and retried correctly**
        """
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status)

        context = FetchContext.create(make_keys(key_count), 400, rng=FirstChoice())

        async def run_test() -> None:
            engine = FetchEngine(
                context,
                FetchConfig(api_base=BASE, batch_pause_seconds=0.0),
                RetryConfig(max_attempts=key_count + 2, base_delay_seconds=0.0),
                transport=httpx.MockTransport(handler),
                sleep=no_sleep,
            )
            async with engine:
                await engine.fetch_batch([f"{BASE}/items/1"])

        try:
            asyncio.run(run_test())
            assert False, "Expected KeyPoolExhaustedError"
        except KeyPoolExhaustedError as e:
            assert e.code == "key_pool_exhausted"

        assert context.key_pool.is_empty()
        assert len(context.key_pool.banned) == key_count

    def test_empty_pool_fails_fast(self) -> None:
        """
        Property 4g: A run without keys cannot fetch anything.

        **Feature: clan-manager, Property 4: Failures are classified and retried correctly**
        """
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        context = FetchContext.create([], 400)

        async def run_test() -> None:
            engine = FetchEngine(
                context,
                FetchConfig(api_base=BASE),
                RetryConfig(max_attempts=3, base_delay_seconds=0.0),
                transport=httpx.MockTransport(handler),
                sleep=no_sleep,
            )
            async with engine:
                await engine.fetch_batch([f"{BASE}/items/1"])

        try:
            asyncio.run(run_test())
            assert False, "Expected KeyPoolExhaustedError"
        except KeyPoolExhaustedError:
            pass

    def test_empty_input_makes_no_requests(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        (results,), context = run_batches(handler, [[]])
        assert results == []
        assert context.fetch_count == 0

    def test_exhaustion_waits_for_sibling_requests(self) -> None:
        """
        Property 4h: A batch aborted by an empty pool lets its in-flight requests finish.

        **Feature: clan-manager, Property 4: Failures are classified and retried correctly**
        """
        finished: list[str] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.01)
            finished.append(request.url.path)
            return httpx.Response(200, json={})

        context = FetchContext(key_pool=ExhaustingPool(make_keys(1), limit=1), max_fetches=400)

        async def run_test() -> int:
            engine = FetchEngine(
                context,
                FetchConfig(api_base=BASE, batch_pause_seconds=0.0),
                RetryConfig(max_attempts=3, base_delay_seconds=0.0),
                transport=httpx.MockTransport(handler),
                sleep=no_sleep,
            )
            async with engine:
                try:
                    await engine.fetch_batch([f"{BASE}/items/1", f"{BASE}/items/2"])
                    assert False, "Expected KeyPoolExhaustedError"
                except KeyPoolExhaustedError as e:
                    assert e.code == "key_pool_exhausted"
                    return len(finished)

        assert asyncio.run(run_test()) == 1
        assert finished == ["/v1/items/1"]
        assert context.key_pool.choices == 2
