"""Background refresh scheduling with per-host staggering and backoff.

The scheduler is driven from the application loop: ``refresh_all`` and
``refresh_feed`` queue work, ``poll`` dispatches due fetches to a worker
pool, and ``drain`` hands completed results back, FIFO, without blocking.
Worker threads only ever call the fetcher and put into the result queue.
"""

import enum
import logging
import queue
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from itertools import groupby
from typing import Callable, Iterable

from termfeed.errors import FetchError, InvalidUrl, NetworkError, RateLimited
from termfeed.feed_parser import ParsedFeed
from termfeed.fetcher import FeedFetcher
from termfeed.models import Feed, RefreshTask
from termfeed.throttle import DomainThrottle, extract_host

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_DELAY = 2.0
DEFAULT_BACKOFF_MAX = 300.0  # 5 minutes
DEFAULT_QUEUE_SIZE = 64


class FeedState(enum.Enum):
    IDLE = "idle"
    QUEUED = "queued"
    FETCHING = "fetching"
    BACKOFF = "backoff"


@dataclass
class FetchOutcome:
    """Result of one fetch, as delivered to the application loop."""

    feed_id: str
    parsed: ParsedFeed | None = None
    error: FetchError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _Tracker:
    state: FeedState = FeedState.IDLE
    task: RefreshTask | None = None
    backoff_until: float = 0.0
    transient_failures: int = 0
    future: Future | None = field(default=None, repr=False)


class RefreshScheduler:
    """Owns the recurring-fetch timeline for all subscribed feeds."""

    def __init__(
        self,
        fetcher: FeedFetcher,
        throttle: DomainThrottle,
        *,
        request_delay: float = DEFAULT_REQUEST_DELAY,
        domain_delays: dict[str, float] | None = None,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
        interval: float = 0.0,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        max_workers: int = 4,
        executor: Executor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetcher = fetcher
        self.throttle = throttle
        self.request_delay = request_delay
        self.domain_delays = {k.lower(): v for k, v in (domain_delays or {}).items()}
        self.backoff_max = backoff_max
        self.interval = interval
        self._clock = clock
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="termfeed-fetch"
        )
        self._owns_executor = executor is None
        self._results: queue.Queue[FetchOutcome] = queue.Queue(maxsize=queue_size)
        self._closed = threading.Event()
        self._trackers: dict[str, _Tracker] = {}
        self._since_pass = 0.0

    # --- Queries ---

    def delay_for(self, host: str) -> float:
        """Minimum spacing between requests to host."""
        return self.domain_delays.get(host, self.request_delay)

    def state_of(self, feed_id: str) -> FeedState:
        tracker = self._trackers.get(feed_id)
        return tracker.state if tracker else FeedState.IDLE

    def backoff_remaining(self, feed_id: str) -> float:
        tracker = self._trackers.get(feed_id)
        if tracker is None or tracker.state is not FeedState.BACKOFF:
            return 0.0
        return max(0.0, tracker.backoff_until - self._clock())

    def queued_tasks(self) -> list[RefreshTask]:
        tasks = [t.task for t in self._trackers.values() if t.state is FeedState.QUEUED and t.task]
        return sorted(tasks, key=lambda t: (t.not_before, t.feed_id))

    @property
    def is_busy(self) -> bool:
        return any(
            t.state in (FeedState.QUEUED, FeedState.FETCHING) for t in self._trackers.values()
        )

    # --- Scheduling ---

    def refresh_all(self, feeds: Iterable[Feed]) -> list[RefreshTask]:
        """Run one scheduling pass over every eligible feed.

        Feeds sharing a host are ordered by id and spaced by that host's
        delay. Feeds fetching or cooling down after a transient failure are
        skipped.
        """
        now = self._clock()
        self._since_pass = 0.0
        eligible = []
        for feed in feeds:
            if not self._eligible(feed.id, now):
                continue
            try:
                host = extract_host(feed.url)
            except InvalidUrl:
                logger.warning("Skipping feed with invalid URL: %s", feed.url)
                continue
            eligible.append((host, feed))

        tasks = []
        eligible.sort(key=lambda pair: (pair[0], pair[1].id))
        for host, group in groupby(eligible, key=lambda pair: pair[0]):
            delay = self.delay_for(host)
            for index, (_, feed) in enumerate(group):
                tasks.append(self._enqueue(feed, host, now + index * delay))
        if tasks:
            logger.info("Refresh pass queued %d feeds", len(tasks))
        return tasks

    def refresh_feed(self, feed: Feed) -> RefreshTask | None:
        """Queue one feed immediately, bypassing stagger and backoff.

        The domain throttle still applies at dispatch.
        """
        tracker = self._trackers.get(feed.id)
        if tracker is not None and tracker.state is FeedState.FETCHING:
            return None
        host = extract_host(feed.url)
        return self._enqueue(feed, host, self._clock())

    def due_for_auto_refresh(self, elapsed: float) -> bool:
        """Advance the auto-refresh timer; True when a pass is due."""
        if self.interval <= 0:
            return False
        self._since_pass += elapsed
        return self._since_pass >= self.interval

    def forget(self, feed_id: str) -> None:
        """Stop tracking a removed feed; its pending result will be dropped."""
        tracker = self._trackers.pop(feed_id, None)
        if tracker is not None and tracker.future is not None:
            tracker.future.cancel()

    def _eligible(self, feed_id: str, now: float) -> bool:
        tracker = self._trackers.get(feed_id)
        if tracker is None:
            return True
        if tracker.state is FeedState.FETCHING:
            return False
        if tracker.state is FeedState.BACKOFF and now < tracker.backoff_until:
            return False
        return True

    def _enqueue(self, feed: Feed, host: str, not_before: float) -> RefreshTask:
        task = RefreshTask(feed_id=feed.id, url=feed.url, host=host, not_before=not_before)
        tracker = self._trackers.setdefault(feed.id, _Tracker())
        tracker.state = FeedState.QUEUED
        tracker.task = task
        return task

    # --- Dispatch ---

    def poll(self) -> int:
        """Dispatch every queued fetch whose time has come. Returns count."""
        now = self._clock()
        for tracker in self._trackers.values():
            if tracker.state is FeedState.BACKOFF and now >= tracker.backoff_until:
                tracker.state = FeedState.QUEUED
                tracker.task.not_before = now

        dispatched = 0
        for task in self.queued_tasks():
            if task.not_before > now:
                continue
            delay = self.delay_for(task.host)
            if not self.throttle.may_proceed(task.host, delay):
                task.not_before = now + self.throttle.time_until_allowed(task.host, delay)
                continue
            tracker = self._trackers[task.feed_id]
            tracker.state = FeedState.FETCHING
            logger.debug("Dispatching %s", task.url)
            tracker.future = self._executor.submit(self._run, task)
            dispatched += 1
        return dispatched

    def _run(self, task: RefreshTask) -> None:
        """Worker body: fetch, then hand the outcome to the loop."""
        try:
            outcome = FetchOutcome(task.feed_id, parsed=self.fetcher.fetch(task.url))
        except FetchError as e:
            outcome = FetchOutcome(task.feed_id, error=e)
        except Exception as e:
            logger.exception("Unexpected error fetching %s", task.url)
            outcome = FetchOutcome(task.feed_id, error=NetworkError(str(e)))
        while not self._closed.is_set():
            try:
                self._results.put(outcome, timeout=0.5)
                return
            except queue.Full:
                continue

    def drain(self) -> list[FetchOutcome]:
        """Collect finished fetches without blocking and update feed states."""
        outcomes = []
        now = self._clock()
        while True:
            try:
                outcome = self._results.get_nowait()
            except queue.Empty:
                break
            tracker = self._trackers.get(outcome.feed_id)
            if tracker is None:
                continue
            tracker.future = None
            self._complete(tracker, outcome, now)
            outcomes.append(outcome)
        return outcomes

    def _complete(self, tracker: _Tracker, outcome: FetchOutcome, now: float) -> None:
        error = outcome.error
        if error is None or not error.transient:
            tracker.state = FeedState.IDLE
            tracker.transient_failures = 0
            if error is not None:
                logger.warning("Feed %s failed: %s", tracker.task.url, error)
            return

        tracker.transient_failures += 1
        cooldown = self.cooldown(tracker.task.host, tracker.transient_failures)
        if isinstance(error, RateLimited) and error.retry_after:
            cooldown = min(max(cooldown, error.retry_after), self.backoff_max)
        tracker.state = FeedState.BACKOFF
        tracker.backoff_until = now + cooldown
        logger.info("Feed %s backing off %.0fs: %s", tracker.task.url, cooldown, error)

    def cooldown(self, host: str, failures: int) -> float:
        """Exponential cooldown seeded by the host delay, capped."""
        seed = max(self.delay_for(host), 1.0)
        return min(seed * 2 ** (failures - 1), self.backoff_max)

    def shutdown(self) -> None:
        """Abandon outstanding work; late results are discarded."""
        self._closed.set()
        for tracker in self._trackers.values():
            if tracker.future is not None:
                tracker.future.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
