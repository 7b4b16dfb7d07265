"""View state machine.

Views are immutable values. ``ViewMachine.transition`` maps a view, a key
and a store snapshot to the next view plus a tuple of effects; it performs
no I/O and never mutates the store. The application loop executes effects.
"""

import enum
from dataclasses import dataclass, field, replace
from typing import Union

from termfeed.filters import FilterOptions
from termfeed.store import DEFAULT_DASHBOARD_LIMIT, StoreSnapshot

PAGE = 10

SAMPLE_FEEDS = {
    "1": "https://news.ycombinator.com/rss",
    "2": "https://feeds.feedburner.com/TechCrunch",
    "3": "https://rss.nytimes.com/services/xml/rss/nyt/HomePage.xml",
}

UP = ("up", "k")
DOWN = ("down", "j")
BACK = ("esc", "h", "backspace")


# --- Views ---


@dataclass(frozen=True)
class Dashboard:
    selected: int = 0
    filters: FilterOptions = field(default_factory=FilterOptions)
    filtering: bool = False


@dataclass(frozen=True)
class FeedList:
    selected: int = 0


@dataclass(frozen=True)
class FeedItems:
    feed_id: str
    selected: int = 0


@dataclass(frozen=True)
class ItemDetail:
    item_id: str
    origin: "View"
    scroll: int = 0


@dataclass(frozen=True)
class Search:
    origin: "View"
    query: str = ""
    selected: int = 0
    editing: bool = True


@dataclass(frozen=True)
class Categories:
    origin: "View"
    selected: int = 0
    assign_feed_id: str | None = None


class PromptKind(enum.Enum):
    ADD_FEED = "Add feed URL"
    NEW_CATEGORY = "New category"
    RENAME_CATEGORY = "Rename category"


@dataclass(frozen=True)
class Prompt:
    origin: "View"
    kind: PromptKind
    text: str = ""
    target_id: str | None = None


View = Union[Dashboard, FeedList, FeedItems, ItemDetail, Search, Categories, Prompt]
ListView = (Dashboard, FeedList, FeedItems, Search, Categories)


# --- Effects ---


@dataclass(frozen=True)
class Quit:
    pass


@dataclass(frozen=True)
class RefreshAll:
    pass


@dataclass(frozen=True)
class RefreshFeed:
    feed_id: str


@dataclass(frozen=True)
class OpenUrl:
    url: str


@dataclass(frozen=True)
class AddFeed:
    url: str
    category: str | None = None


@dataclass(frozen=True)
class RemoveFeed:
    feed_id: str


@dataclass(frozen=True)
class MarkRead:
    item_id: str


@dataclass(frozen=True)
class ToggleRead:
    item_id: str


@dataclass(frozen=True)
class ToggleBookmark:
    item_id: str


@dataclass(frozen=True)
class MarkFeedRead:
    feed_id: str


@dataclass(frozen=True)
class CreateCategory:
    name: str


@dataclass(frozen=True)
class RenameCategory:
    category_id: str
    name: str


@dataclass(frozen=True)
class DeleteCategory:
    category_id: str


@dataclass(frozen=True)
class AssignCategory:
    feed_id: str
    category_id: str | None


@dataclass(frozen=True)
class ToggleCategory:
    category_id: str


@dataclass(frozen=True)
class Transition:
    state: View
    effects: tuple = ()


def _move(selected: int, delta: int, length: int) -> int:
    return max(0, min(selected + delta, length - 1))


def _printable(key: str) -> bool:
    return len(key) == 1 and key.isprintable()


class ViewMachine:
    """Pure controller for the view states."""

    def __init__(self, dashboard_limit: int = DEFAULT_DASHBOARD_LIMIT, detail_height: int = 20):
        self.dashboard_limit = dashboard_limit
        self.detail_height = detail_height
        self._handlers = {
            Dashboard: self._dashboard,
            FeedList: self._feed_list,
            FeedItems: self._feed_items,
            ItemDetail: self._item_detail,
            Search: self._search,
            Categories: self._categories,
            Prompt: self._prompt,
        }

    # --- Derived rows ---

    def visible_items(self, state: View, snapshot: StoreSnapshot) -> list:
        """Rows shown by a list view (items, feeds or categories)."""
        if isinstance(state, Dashboard):
            items = snapshot.dashboard_items(self.dashboard_limit)
            if not state.filters.is_active:
                return items
            return [i for i in items if state.filters.matches(i, snapshot.feed(i.feed_id))]
        if isinstance(state, FeedList):
            return list(snapshot.feeds)
        if isinstance(state, FeedItems):
            return snapshot.items_for_feed(state.feed_id)
        if isinstance(state, Search):
            return snapshot.search(state.query)
        if isinstance(state, Categories):
            return list(snapshot.categories)
        return []

    def detail_max_scroll(self, item_id: str, snapshot: StoreSnapshot) -> int:
        item = snapshot.item(item_id)
        if item is None:
            return 0
        lines = 4 + len((item.summary or "No content.").splitlines())
        return max(0, lines - self.detail_height)

    def clamp(self, state: View, snapshot: StoreSnapshot) -> View:
        """Bring a view back in line with the store after any change."""
        if isinstance(state, FeedItems) and snapshot.feed(state.feed_id) is None:
            return self.clamp(FeedList(), snapshot)
        if isinstance(state, ItemDetail):
            if snapshot.item(state.item_id) is None:
                return self.clamp(state.origin, snapshot)
            limit = self.detail_max_scroll(state.item_id, snapshot)
            return replace(state, scroll=max(0, min(state.scroll, limit)))
        if isinstance(state, Categories) and state.assign_feed_id:
            if snapshot.feed(state.assign_feed_id) is None:
                state = replace(state, assign_feed_id=None)
        if isinstance(state, ListView):
            length = len(self.visible_items(state, snapshot))
            selected = max(0, min(state.selected, length - 1))
            if selected != state.selected:
                state = replace(state, selected=selected)
        return state

    # --- Transitions ---

    def transition(self, state: View, key: str, snapshot: StoreSnapshot) -> Transition:
        if key == "ctrl+c":
            return Transition(state, (Quit(),))
        result = self._handlers[type(state)](state, key, snapshot)
        return Transition(self.clamp(result.state, snapshot), result.effects)

    def _list_keys(self, state, key: str, rows: list) -> Transition | None:
        """Keys shared by every list view."""
        if key in UP:
            return Transition(replace(state, selected=_move(state.selected, -1, len(rows))))
        if key in DOWN:
            return Transition(replace(state, selected=_move(state.selected, 1, len(rows))))
        if key == "pgup":
            return Transition(replace(state, selected=_move(state.selected, -PAGE, len(rows))))
        if key == "pgdn":
            return Transition(replace(state, selected=_move(state.selected, PAGE, len(rows))))
        return None

    def _item_keys(self, state, key: str, item) -> Transition | None:
        """Keys acting on a selected item in any item list."""
        if item is None:
            return None
        if key == "enter":
            return Transition(ItemDetail(item.id, origin=state), (MarkRead(item.id),))
        if key == "o" and item.link:
            return Transition(state, (OpenUrl(item.link),))
        if key == "b":
            return Transition(state, (ToggleBookmark(item.id),))
        if key == "m":
            return Transition(state, (ToggleRead(item.id),))
        return None

    def _dashboard(self, state: Dashboard, key: str, snapshot: StoreSnapshot) -> Transition:
        if state.filtering:
            return self._filter_keys(state, key, snapshot)

        rows = self.visible_items(state, snapshot)
        selected = rows[state.selected] if state.selected < len(rows) else None
        if key == "q":
            return Transition(state, (Quit(),))
        if key == "tab":
            return Transition(FeedList())
        if key == "/":
            return Transition(Search(origin=state))
        if key == "a":
            return Transition(Prompt(origin=state, kind=PromptKind.ADD_FEED))
        if key == "r":
            return Transition(state, (RefreshAll(),))
        if key == "f":
            return Transition(replace(state, filtering=True))
        if key == "C":
            return Transition(Categories(origin=state))
        if key in SAMPLE_FEEDS and not snapshot.feeds:
            return Transition(state, (AddFeed(SAMPLE_FEEDS[key]),))
        return (
            self._list_keys(state, key, rows)
            or self._item_keys(state, key, selected)
            or Transition(state)
        )

    def _filter_keys(self, state: Dashboard, key: str, snapshot: StoreSnapshot) -> Transition:
        filters = state.filters
        if key in ("esc", "f"):
            return Transition(replace(state, filtering=False))
        if key == "c":
            filters = filters.cycle_category([c.name for c in snapshot.categories])
        elif key == "t":
            filters = filters.cycle_age()
        elif key == "a":
            filters = filters.cycle_author()
        elif key == "r":
            filters = filters.cycle_read_status()
        elif key == "l":
            filters = filters.cycle_length()
        elif key == "x":
            filters = FilterOptions()
        else:
            return Transition(state)
        return Transition(replace(state, filters=filters))

    def _feed_list(self, state: FeedList, key: str, snapshot: StoreSnapshot) -> Transition:
        feeds = snapshot.feeds
        feed = feeds[state.selected] if state.selected < len(feeds) else None
        if key == "q":
            return Transition(state, (Quit(),))
        if key in ("tab", "backtab", "home") or key in BACK:
            return Transition(Dashboard())
        if key == "/":
            return Transition(Search(origin=state))
        if key == "a":
            return Transition(Prompt(origin=state, kind=PromptKind.ADD_FEED))
        if key == "r":
            return Transition(state, (RefreshAll(),))
        if key == "C":
            return Transition(Categories(origin=state))
        moved = self._list_keys(state, key, list(feeds))
        if moved is not None or feed is None:
            return moved or Transition(state)
        if key == "enter":
            return Transition(FeedItems(feed.id))
        if key == "d":
            return Transition(state, (RemoveFeed(feed.id),))
        if key == "R":
            return Transition(state, (RefreshFeed(feed.id),))
        if key == "M":
            return Transition(state, (MarkFeedRead(feed.id),))
        if key == "c":
            return Transition(Categories(origin=state, assign_feed_id=feed.id))
        return Transition(state)

    def _feed_items(self, state: FeedItems, key: str, snapshot: StoreSnapshot) -> Transition:
        rows = snapshot.items_for_feed(state.feed_id)
        selected = rows[state.selected] if state.selected < len(rows) else None
        if key == "q":
            return Transition(state, (Quit(),))
        if key in BACK:
            index = next(
                (i for i, f in enumerate(snapshot.feeds) if f.id == state.feed_id), 0
            )
            return Transition(FeedList(selected=index))
        if key == "home":
            return Transition(Dashboard())
        if key == "/":
            return Transition(Search(origin=state))
        if key == "r":
            return Transition(state, (RefreshAll(),))
        if key == "R":
            return Transition(state, (RefreshFeed(state.feed_id),))
        if key == "M":
            return Transition(state, (MarkFeedRead(state.feed_id),))
        return (
            self._list_keys(state, key, rows)
            or self._item_keys(state, key, selected)
            or Transition(state)
        )

    def _item_detail(self, state: ItemDetail, key: str, snapshot: StoreSnapshot) -> Transition:
        item = snapshot.item(state.item_id)
        limit = self.detail_max_scroll(state.item_id, snapshot)
        scroll = state.scroll
        if key == "q":
            return Transition(state, (Quit(),))
        if key in BACK:
            return Transition(state.origin)
        if key == "home":
            return Transition(Dashboard())
        if key == "r":
            return Transition(state, (RefreshAll(),))
        if item is not None and key == "o" and item.link:
            return Transition(state, (OpenUrl(item.link),))
        if item is not None and key == "b":
            return Transition(state, (ToggleBookmark(item.id),))
        if item is not None and key == "m":
            return Transition(state, (ToggleRead(item.id),))
        if key in UP:
            scroll -= 1
        elif key in DOWN:
            scroll += 1
        elif key == "pgup":
            scroll -= PAGE
        elif key == "pgdn":
            scroll += PAGE
        elif key == "g":
            scroll = 0
        elif key in ("G", "end"):
            scroll = limit
        return Transition(replace(state, scroll=max(0, min(scroll, limit))))

    def _search(self, state: Search, key: str, snapshot: StoreSnapshot) -> Transition:
        if key == "esc":
            return Transition(state.origin)
        if state.editing:
            if key == "enter":
                return Transition(replace(state, editing=False, selected=0))
            if key == "backspace":
                return Transition(replace(state, query=state.query[:-1], selected=0))
            if _printable(key):
                return Transition(replace(state, query=state.query + key, selected=0))
            rows = snapshot.search(state.query)
            return self._list_keys(state, key, rows) or Transition(state)

        rows = snapshot.search(state.query)
        selected = rows[state.selected] if state.selected < len(rows) else None
        if key == "q":
            return Transition(state, (Quit(),))
        if key == "/":
            return Transition(replace(state, editing=True))
        if key == "home":
            return Transition(Dashboard())
        if key in ("h", "backspace"):
            return Transition(state.origin)
        return (
            self._list_keys(state, key, rows)
            or self._item_keys(state, key, selected)
            or Transition(state)
        )

    def _categories(self, state: Categories, key: str, snapshot: StoreSnapshot) -> Transition:
        categories = snapshot.categories
        category = categories[state.selected] if state.selected < len(categories) else None
        if key == "q":
            return Transition(state, (Quit(),))
        if key == "esc":
            return Transition(state.origin)
        if key == "n":
            return Transition(Prompt(origin=state, kind=PromptKind.NEW_CATEGORY))
        if key == "x" and state.assign_feed_id:
            return Transition(state.origin, (AssignCategory(state.assign_feed_id, None),))
        moved = self._list_keys(state, key, list(categories))
        if moved is not None or category is None:
            return moved or Transition(state)
        if key == "e":
            return Transition(Prompt(
                origin=state,
                kind=PromptKind.RENAME_CATEGORY,
                text=category.name,
                target_id=category.id,
            ))
        if key == "d":
            return Transition(state, (DeleteCategory(category.id),))
        if key == " ":
            return Transition(state, (ToggleCategory(category.id),))
        if key == "enter" and state.assign_feed_id:
            return Transition(state.origin, (AssignCategory(state.assign_feed_id, category.id),))
        return Transition(state)

    def _prompt(self, state: Prompt, key: str, snapshot: StoreSnapshot) -> Transition:
        if key == "esc":
            return Transition(state.origin)
        if key == "backspace":
            return Transition(replace(state, text=state.text[:-1]))
        if key == "enter":
            text = state.text.strip()
            if not text:
                return Transition(state.origin)
            if state.kind is PromptKind.ADD_FEED:
                effect = AddFeed(text)
            elif state.kind is PromptKind.NEW_CATEGORY:
                effect = CreateCategory(text)
            else:
                effect = RenameCategory(state.target_id, text)
            return Transition(state.origin, (effect,))
        if _printable(key):
            return Transition(replace(state, text=state.text + key))
        return Transition(state)
