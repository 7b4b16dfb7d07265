"""Tests for refresh scheduling, staggering and backoff."""

import pytest

from termfeed.errors import FetchTimeout, NetworkError, ParseFailure, RateLimited
from termfeed.models import Feed
from termfeed.scheduler import FeedState, RefreshScheduler
from termfeed.throttle import DomainThrottle

A1 = Feed(url="https://a.com/1", title="a1", id="a1")
A2 = Feed(url="https://a.com/2", title="a2", id="a2")
A3 = Feed(url="https://a.com/3", title="a3", id="a3")
B1 = Feed(url="https://b.com/feed", title="b1", id="b1")


@pytest.fixture
def make_scheduler(clock, executor, fake_fetcher):
    def _make(**kwargs):
        kwargs.setdefault("request_delay", 2.0)
        return RefreshScheduler(
            fake_fetcher,
            DomainThrottle(clock),
            executor=executor,
            clock=clock,
            **kwargs,
        )

    return _make


def run_for(scheduler, clock, executor, seconds, step=0.5):
    """Drive the scheduler the way the application loop does."""
    outcomes = []
    elapsed = 0.0
    while elapsed <= seconds:
        scheduler.poll()
        executor.run_pending()
        outcomes.extend(scheduler.drain())
        clock.advance(step)
        elapsed += step
    return outcomes


class TestStagger:
    def test_same_host_offsets(self, make_scheduler):
        scheduler = make_scheduler()
        tasks = scheduler.refresh_all([A2, B1, A1, A3])
        offsets = {t.feed_id: t.not_before for t in tasks}
        assert offsets == {"a1": 0.0, "a2": 2.0, "a3": 4.0, "b1": 0.0}
        assert all(scheduler.state_of(f) is FeedState.QUEUED for f in offsets)

    def test_domain_delay_override(self, make_scheduler):
        scheduler = make_scheduler(domain_delays={"A.com": 5.0})
        tasks = scheduler.refresh_all([A1, A2])
        assert [t.not_before for t in tasks] == [0.0, 5.0]

    def test_same_host_fetches_spaced(self, make_scheduler, clock, executor, fake_fetcher):
        scheduler = make_scheduler()
        scheduler.refresh_all([A1, A2, A3, B1])
        outcomes = run_for(scheduler, clock, executor, 10)

        assert len(outcomes) == 4
        times = fake_fetcher.times_for("https://a.com")
        assert len(times) == 3
        assert all(later - earlier >= 2.0 for earlier, later in zip(times, times[1:]))
        assert fake_fetcher.times_for("https://b.com") == [0.0]
        assert not scheduler.is_busy

    def test_manual_refresh_honors_throttle(self, make_scheduler, clock, executor, fake_fetcher):
        scheduler = make_scheduler()
        scheduler.refresh_feed(A1)
        scheduler.poll()
        # a2 is first in its host group, so it is due now but the host was just hit
        tasks = scheduler.refresh_all([A1, A2])
        assert [t.feed_id for t in tasks] == ["a2"]
        executor.run_pending()
        run_for(scheduler, clock, executor, 5)

        times = fake_fetcher.times_for("https://a.com")
        assert times == [0.0, 2.0]

    def test_invalid_url_skipped(self, make_scheduler):
        scheduler = make_scheduler()
        bad = Feed(url="not a url", title="bad", id="bad")
        tasks = scheduler.refresh_all([bad, B1])
        assert [t.feed_id for t in tasks] == ["b1"]

    def test_fetching_feed_not_requeued(self, make_scheduler):
        scheduler = make_scheduler()
        scheduler.refresh_all([A1])
        scheduler.poll()
        assert scheduler.state_of("a1") is FeedState.FETCHING
        assert scheduler.refresh_all([A1]) == []
        assert scheduler.refresh_feed(A1) is None


class TestOutcomes:
    def test_success_returns_to_idle(self, make_scheduler, clock, executor, parsed, entry, fake_fetcher):
        fake_fetcher.responses[B1.url] = parsed(entry("x"))
        scheduler = make_scheduler()
        scheduler.refresh_all([B1])
        outcomes = run_for(scheduler, clock, executor, 0)
        assert len(outcomes) == 1
        assert outcomes[0].ok
        assert outcomes[0].parsed.entries[0].key == "x"
        assert scheduler.state_of("b1") is FeedState.IDLE

    @pytest.mark.parametrize("error", [NetworkError("HTTP 500"), ParseFailure("bad")])
    def test_permanent_errors_go_idle(self, make_scheduler, clock, executor, fake_fetcher, error):
        fake_fetcher.responses[B1.url] = error
        scheduler = make_scheduler()
        scheduler.refresh_all([B1])
        outcomes = run_for(scheduler, clock, executor, 0)
        assert outcomes[0].error is error
        assert scheduler.state_of("b1") is FeedState.IDLE
        assert scheduler.backoff_remaining("b1") == 0.0

    def test_unexpected_exception_becomes_network_error(self, make_scheduler, clock, executor, fake_fetcher):
        fake_fetcher.responses[B1.url] = ValueError("boom")
        scheduler = make_scheduler()
        scheduler.refresh_all([B1])
        outcomes = run_for(scheduler, clock, executor, 0)
        assert isinstance(outcomes[0].error, NetworkError)

    def test_forget_drops_pending_result(self, make_scheduler, executor):
        scheduler = make_scheduler()
        scheduler.refresh_all([B1])
        scheduler.poll()
        scheduler.forget("b1")
        assert executor.run_pending() == 0
        assert scheduler.drain() == []

    def test_forget_drops_finished_result(self, make_scheduler, executor):
        scheduler = make_scheduler()
        scheduler.refresh_all([B1])
        scheduler.poll()
        executor.run_pending()
        scheduler.forget("b1")
        assert scheduler.drain() == []

    def test_results_discarded_after_shutdown(self, make_scheduler, executor):
        scheduler = make_scheduler()
        scheduler.refresh_all([A1, B1])
        scheduler.poll()
        scheduler.shutdown()
        executor.run_pending()
        assert scheduler.drain() == []


class TestBackoff:
    def test_cooldown_doubles_and_caps(self, make_scheduler):
        scheduler = make_scheduler(request_delay=10.0, backoff_max=300.0)
        assert [scheduler.cooldown("b.com", n) for n in range(1, 7)] == [10, 20, 40, 80, 160, 300]

    def test_cooldown_seed_at_least_one_second(self, make_scheduler):
        scheduler = make_scheduler(request_delay=0.0)
        assert scheduler.cooldown("b.com", 1) == 1.0

    def test_rate_limited_feed_skipped_until_cooldown(self, make_scheduler, clock, executor, fake_fetcher):
        fake_fetcher.responses[B1.url] = RateLimited()
        scheduler = make_scheduler(request_delay=10.0)
        scheduler.refresh_all([B1])
        run_for(scheduler, clock, executor, 0)

        assert scheduler.state_of("b1") is FeedState.BACKOFF
        assert scheduler.backoff_remaining("b1") == pytest.approx(9.5)
        assert scheduler.refresh_all([B1]) == []
        run_for(scheduler, clock, executor, 8)
        assert len(fake_fetcher.calls) == 1

        # the cooldown expires and the feed is retried on its own
        run_for(scheduler, clock, executor, 2)
        assert len(fake_fetcher.calls) == 2
        assert scheduler.state_of("b1") is FeedState.BACKOFF
        # second failure at t=10 doubles the cooldown to 20s; the loop ends at t=11.5
        assert scheduler.backoff_remaining("b1") == pytest.approx(18.5)

    def test_retry_after_extends_cooldown(self, make_scheduler, clock, executor, fake_fetcher):
        fake_fetcher.responses[B1.url] = RateLimited(retry_after=60)
        scheduler = make_scheduler()
        scheduler.refresh_all([B1])
        run_for(scheduler, clock, executor, 0)
        assert scheduler.backoff_remaining("b1") == pytest.approx(59.5)

    def test_retry_after_is_capped(self, make_scheduler, clock, executor, fake_fetcher):
        fake_fetcher.responses[B1.url] = RateLimited(retry_after=3600)
        scheduler = make_scheduler(backoff_max=120.0)
        scheduler.refresh_all([B1])
        run_for(scheduler, clock, executor, 0)
        assert scheduler.backoff_remaining("b1") == pytest.approx(119.5)

    def test_timeouts_grow_to_cap(self, make_scheduler, clock, executor, fake_fetcher):
        fake_fetcher.responses[B1.url] = FetchTimeout()
        scheduler = make_scheduler(request_delay=4.0, backoff_max=10.0)
        scheduler.refresh_all([B1])
        run_for(scheduler, clock, executor, 0)
        assert scheduler.backoff_remaining("b1") == pytest.approx(3.5)
        run_for(scheduler, clock, executor, 4)
        assert len(fake_fetcher.calls) == 2
        run_for(scheduler, clock, executor, 8)
        run_for(scheduler, clock, executor, 10)
        assert len(fake_fetcher.calls) == 4
        assert scheduler.backoff_remaining("b1") <= 10.0

    def test_success_resets_failures(self, make_scheduler, clock, executor, fake_fetcher, parsed):
        fake_fetcher.responses[B1.url] = FetchTimeout()
        scheduler = make_scheduler(request_delay=4.0)
        scheduler.refresh_all([B1])
        run_for(scheduler, clock, executor, 0)
        fake_fetcher.responses[B1.url] = parsed()
        run_for(scheduler, clock, executor, 4)
        assert scheduler.state_of("b1") is FeedState.IDLE

        fake_fetcher.responses[B1.url] = FetchTimeout()
        clock.advance(10)
        scheduler.refresh_all([B1])
        run_for(scheduler, clock, executor, 0)
        assert scheduler.backoff_remaining("b1") == pytest.approx(3.5)

    def test_manual_refresh_bypasses_backoff(self, make_scheduler, clock, executor, fake_fetcher):
        fake_fetcher.responses[B1.url] = RateLimited()
        scheduler = make_scheduler(request_delay=10.0)
        scheduler.refresh_all([B1])
        run_for(scheduler, clock, executor, 0)

        clock.now = 1.0
        scheduler.refresh_feed(B1)
        assert scheduler.state_of("b1") is FeedState.QUEUED
        scheduler.poll()
        # still inside the host delay, so the throttle defers it
        assert len(fake_fetcher.calls) == 1
        assert scheduler.queued_tasks()[0].not_before == pytest.approx(10.0)

        clock.now = 10.0
        scheduler.poll()
        assert len(fake_fetcher.calls) == 1
        executor.run_pending()
        assert len(fake_fetcher.calls) == 2


class TestAutoRefresh:
    def test_disabled_when_interval_zero(self, make_scheduler):
        assert make_scheduler(interval=0).due_for_auto_refresh(1000) is False

    def test_timer(self, make_scheduler):
        scheduler = make_scheduler(interval=10)
        assert scheduler.due_for_auto_refresh(4) is False
        assert scheduler.due_for_auto_refresh(6) is True
        scheduler.refresh_all([])
        assert scheduler.due_for_auto_refresh(1) is False
