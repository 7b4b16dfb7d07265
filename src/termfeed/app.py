"""Application context and per-tick loop."""

import logging
import webbrowser
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable

from termfeed.config import AppConfig
from termfeed.database import Database
from termfeed.errors import CategoryError, DuplicateUrl, InvalidUrl, PersistenceFailure
from termfeed.fetcher import FeedFetcher
from termfeed.models import utcnow
from termfeed.scheduler import FeedState, FetchOutcome, RefreshScheduler
from termfeed.store import FeedStore, StoreSnapshot
from termfeed.throttle import DomainThrottle
from termfeed.views import (
    AddFeed,
    AssignCategory,
    Categories,
    CreateCategory,
    Dashboard,
    DeleteCategory,
    FeedItems,
    FeedList,
    ItemDetail,
    MarkFeedRead,
    MarkRead,
    OpenUrl,
    Prompt,
    Quit,
    RefreshAll,
    RefreshFeed,
    RemoveFeed,
    RenameCategory,
    Search,
    ToggleBookmark,
    ToggleCategory,
    ToggleRead,
    ViewMachine,
)

logger = logging.getLogger(__name__)

SPINNER = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

HINTS = {
    Dashboard: "tab feeds  / search  a add  r refresh  f filter  C categories  enter open  o browser  b bookmark  m read  q quit",
    FeedList: "tab dashboard  enter items  a add  d delete  R refresh feed  c set category  M mark read  q quit",
    FeedItems: "esc back  enter open  R refresh feed  M mark all read  o browser  b bookmark  m read  q quit",
    ItemDetail: "esc back  up/down scroll  g/G top/bottom  o browser  b bookmark  m read  q quit",
    Search: "type to search  enter results  esc back",
    Categories: "n new  e rename  d delete  space expand  enter assign  x unassign  esc back",
    Prompt: "enter confirm  esc cancel",
}
FILTER_HINT = "c category  t age  a author  r read  l length  x clear  esc done"


@dataclass
class Row:
    text: str
    meta: str = ""
    selected: bool = False
    read: bool = False
    bookmarked: bool = False
    error: bool = False


@dataclass
class RenderModel:
    """Everything the renderer needs for one frame."""

    view: str
    title: str
    rows: list[Row] = field(default_factory=list)
    detail: list[str] | None = None
    status: str = ""
    banner: str | None = None
    prompt: str | None = None
    loading: str | None = None


def format_date(dt: datetime | None, now: datetime | None = None) -> str:
    """Relative age for recent items, full date for older ones."""
    if dt is None:
        return ""
    diff = (now or utcnow()) - dt
    minutes = int(diff.total_seconds() // 60)
    if minutes < 60:
        return f"{max(minutes, 0)} minutes ago"
    if minutes < 24 * 60:
        return f"{minutes // 60} hours ago"
    if diff.days < 7:
        return f"{diff.days} days ago"
    return dt.strftime("%B %d, %Y")


class Application:
    """Long-lived context owning the store, scheduler and view state.

    ``tick`` is the only entry point used by the terminal loop; everything
    that mutates the store happens inside it, on the calling thread.
    """

    def __init__(
        self,
        config: AppConfig,
        store: FeedStore,
        scheduler: RefreshScheduler,
        database: Database | None = None,
        opener: Callable[[str], object] = webbrowser.open,
    ):
        self.config = config
        self.store = store
        self.scheduler = scheduler
        self.database = database
        self.opener = opener
        self.views = ViewMachine(dashboard_limit=config.ui.dashboard_limit)
        self.state = Dashboard()
        self.quit_requested = False
        self.banner: str | None = None
        self._banner_left = 0.0
        self._saved_version = store.version
        self._since_save = 0.0
        self._frame = 0

    @classmethod
    def create(cls, config: AppConfig, database: Database | None = None, **kwargs) -> "Application":
        """Build the application context, loading persisted state if available."""
        store = FeedStore()
        load_error = None
        if database is not None:
            try:
                store = FeedStore.from_state(database.load())
            except PersistenceFailure as e:
                logger.error("Could not load saved feeds: %s", e)
                load_error = str(e)

        throttle = DomainThrottle()
        fetcher = FeedFetcher(
            timeout=config.fetch.timeout_seconds,
            user_agent=config.fetch.user_agent,
        )
        scheduler = RefreshScheduler(
            fetcher,
            throttle,
            request_delay=config.refresh.request_delay_seconds,
            domain_delays=config.refresh.domain_delays,
            backoff_max=config.refresh.backoff_max_seconds,
            interval=config.refresh.interval_seconds,
            queue_size=config.refresh.queue_size,
            max_workers=config.fetch.max_workers,
        )
        app = cls(config, store, scheduler, database, **kwargs)
        if load_error:
            app.show_error(f"Could not load saved feeds: {load_error}")
        return app

    def start(self) -> None:
        if self.config.refresh.refresh_on_start:
            self.scheduler.refresh_all(self.store.snapshot().feeds)

    def close(self) -> None:
        self._persist(force=True)
        self.scheduler.shutdown()

    def show_error(self, message: str) -> None:
        self.banner = message
        self._banner_left = self.config.ui.error_display_seconds

    # --- Loop ---

    def tick(
        self, elapsed: float, keys: Iterable[str] = (), viewport_height: int | None = None
    ) -> RenderModel:
        """Advance the application by one frame and return what to draw.

        viewport_height is the number of body lines the renderer will show;
        it bounds detail scrolling.
        """
        if viewport_height is not None:
            self.views.detail_height = max(1, viewport_height)
        if self.banner is not None:
            self._banner_left -= elapsed
            if self._banner_left <= 0:
                self.banner = None

        for outcome in self.scheduler.drain():
            self._apply_outcome(outcome)

        for key in keys:
            result = self.views.transition(self.state, key, self.store.snapshot())
            self.state = result.state
            for effect in result.effects:
                self._execute(effect)
            if self.quit_requested:
                break

        if self.scheduler.due_for_auto_refresh(elapsed):
            self.scheduler.refresh_all(self.store.snapshot().feeds)
        self.scheduler.poll()

        snapshot = self.store.snapshot()
        self.state = self.views.clamp(self.state, snapshot)
        self._since_save += elapsed
        self._persist()

        if self.scheduler.is_busy:
            self._frame = (self._frame + 1) % len(SPINNER)
        return self.render_model(snapshot)

    def _apply_outcome(self, outcome: FetchOutcome) -> None:
        if outcome.feed_id not in self.store:
            return
        if outcome.ok:
            new = self.store.merge_fetch_result(outcome.feed_id, outcome.parsed)
            if new:
                logger.info("Feed %s: %d new items", outcome.feed_id, new)
        else:
            self.store.record_fetch_error(outcome.feed_id, str(outcome.error))

    def _execute(self, effect) -> None:
        try:
            self._dispatch(effect)
        except (InvalidUrl, DuplicateUrl) as e:
            self.show_error(f"Failed to add feed: {e}")
        except CategoryError as e:
            self.show_error(str(e))

    def _dispatch(self, effect) -> None:
        store = self.store
        if isinstance(effect, Quit):
            self.quit_requested = True
        elif isinstance(effect, RefreshAll):
            self.scheduler.refresh_all(store.snapshot().feeds)
        elif isinstance(effect, RefreshFeed):
            feed = store.snapshot().feed(effect.feed_id)
            if feed is not None:
                self.scheduler.refresh_feed(feed)
        elif isinstance(effect, AddFeed):
            feed_id = store.add_feed(effect.url, effect.category)
            self.scheduler.refresh_feed(store.snapshot().feed(feed_id))
        elif isinstance(effect, RemoveFeed):
            self.scheduler.forget(effect.feed_id)
            store.remove_feed(effect.feed_id)
        elif isinstance(effect, OpenUrl):
            self._open(effect.url)
        elif isinstance(effect, MarkRead):
            store.mark_read(effect.item_id)
        elif isinstance(effect, ToggleRead):
            store.toggle_read(effect.item_id)
        elif isinstance(effect, ToggleBookmark):
            store.toggle_bookmark(effect.item_id)
        elif isinstance(effect, MarkFeedRead):
            store.mark_feed_read(effect.feed_id)
        elif isinstance(effect, CreateCategory):
            store.create_category(effect.name)
        elif isinstance(effect, RenameCategory):
            store.rename_category(effect.category_id, effect.name)
        elif isinstance(effect, DeleteCategory):
            store.delete_category(effect.category_id)
        elif isinstance(effect, AssignCategory):
            store.assign_category(effect.feed_id, effect.category_id)
        elif isinstance(effect, ToggleCategory):
            store.toggle_category_expanded(effect.category_id)
        else:
            raise TypeError(f"Unknown effect {effect!r}")

    def _open(self, url: str) -> None:
        try:
            self.opener(url)
        except (webbrowser.Error, OSError) as e:
            self.show_error(f"Failed to open link: {e}")

    def _persist(self, force: bool = False) -> None:
        """Write the store when it changed, at most once per save interval."""
        if self.database is None or self.store.version == self._saved_version:
            return
        if not force and self._since_save < self.config.storage.save_interval_seconds:
            return
        self._saved_version = self.store.version
        self._since_save = 0.0
        try:
            self.database.save(self.store.to_state())
        except PersistenceFailure as e:
            logger.error("Saving state failed: %s", e)
            self.show_error(f"Could not save: {e}")

    # --- Rendering ---

    def render_model(self, snapshot: StoreSnapshot) -> RenderModel:
        state = self.state
        base = state.origin if isinstance(state, Prompt) else state
        model = RenderModel(
            view=type(base).__name__,
            title=self._title(base, snapshot),
            status=HINTS[type(state)],
            banner=self.banner,
            loading=SPINNER[self._frame] if self.scheduler.is_busy else None,
        )
        if isinstance(state, Prompt):
            model.prompt = f"{state.kind.value}: {state.text}"
        if isinstance(base, Dashboard):
            if base.filtering:
                model.status = FILTER_HINT
            if base.filters.is_active or base.filtering:
                model.status = f"{base.filters.summary()}  |  {model.status}"
        if isinstance(base, Search) and base.editing:
            model.prompt = f"Search: {base.query}"

        if isinstance(base, ItemDetail):
            model.detail = self._detail_lines(base, snapshot)
            return model

        rows = self.views.visible_items(base, snapshot)
        selected = getattr(base, "selected", 0)
        if isinstance(base, FeedList):
            model.rows = [self._feed_row(f, snapshot) for f in rows]
        elif isinstance(base, Categories):
            model.rows = [self._category_row(c, snapshot) for c in rows]
        else:
            now = utcnow()
            model.rows = [self._item_row(i, snapshot, now) for i in rows]
        if model.rows:
            model.rows[selected].selected = True
        return model

    def _title(self, state, snapshot: StoreSnapshot) -> str:
        if isinstance(state, FeedItems):
            feed = snapshot.feed(state.feed_id)
            return feed.title if feed else "Feed"
        if isinstance(state, Search):
            return f"Search: {state.query}"
        if isinstance(state, Categories) and state.assign_feed_id:
            feed = snapshot.feed(state.assign_feed_id)
            return f"Assign category: {feed.title if feed else ''}"
        if isinstance(state, ItemDetail):
            return "Item"
        if isinstance(state, Dashboard) and not snapshot.feeds:
            return "Dashboard (press a to add a feed, or 1/2/3 for a sample)"
        return {Dashboard: "Dashboard", FeedList: "Feeds", Categories: "Categories"}[type(state)]

    def _item_row(self, item, snapshot: StoreSnapshot, now: datetime) -> Row:
        feed = snapshot.feed(item.feed_id)
        meta = " · ".join(p for p in (feed.title if feed else "", format_date(item.published_at, now)) if p)
        return Row(text=item.title, meta=meta, read=item.is_read, bookmarked=item.is_bookmarked)

    def _feed_row(self, feed, snapshot: StoreSnapshot) -> Row:
        parts = [f"{snapshot.unread_count(feed.id)} unread"]
        if feed.category:
            parts.append(feed.category)
        state = self.scheduler.state_of(feed.id)
        if state is FeedState.FETCHING:
            parts.append("fetching")
        elif state is FeedState.BACKOFF:
            parts.append(f"retry in {self.scheduler.backoff_remaining(feed.id):.0f}s")
        if feed.last_error:
            parts.append(f"error: {feed.last_error}")
        return Row(text=feed.title, meta="  ".join(parts), error=feed.last_error is not None)

    def _category_row(self, category, snapshot: StoreSnapshot) -> Row:
        members = [f.title for f in snapshot.feeds if f.category == category.name]
        marker = "▾" if category.expanded else "▸"
        meta = ", ".join(members) if category.expanded else f"{len(members)} feeds"
        return Row(text=f"{marker} {category.name}", meta=meta)

    def _detail_lines(self, state: ItemDetail, snapshot: StoreSnapshot) -> list[str]:
        item = snapshot.item(state.item_id)
        if item is None:
            return []
        feed = snapshot.feed(item.feed_id)
        header = " · ".join(
            p for p in (
                feed.title if feed else "",
                format_date(item.published_at),
                item.author or "",
                "★ bookmarked" if item.is_bookmarked else "",
            ) if p
        )
        lines = [item.title, header, item.link or "", ""]
        lines.extend((item.summary or "No content.").splitlines())
        return lines[state.scroll:]
