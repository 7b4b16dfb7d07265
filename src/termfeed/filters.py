"""Dashboard filter options."""

import enum
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from termfeed.models import Feed, Item, utcnow

LENGTH_STEPS = (100, 500, 1000)
LENGTH_LABELS = {100: "Short", 500: "Medium", 1000: "Long"}


class TimeFilter(enum.Enum):
    TODAY = "Today"
    THIS_WEEK = "This Week"
    THIS_MONTH = "This Month"
    OLDER = "Older than a month"


_AGE_CYCLE = [None, TimeFilter.TODAY, TimeFilter.THIS_WEEK, TimeFilter.THIS_MONTH, TimeFilter.OLDER]
_TRI_CYCLE = [None, True, False]


def _next(cycle: list, current):
    index = cycle.index(current) if current in cycle else -1
    return cycle[(index + 1) % len(cycle)]


@dataclass(frozen=True)
class FilterOptions:
    """Active dashboard filters; ``None`` means the filter is off."""

    category: str | None = None
    age: TimeFilter | None = None
    has_author: bool | None = None
    read_status: bool | None = None
    min_length: int | None = None

    @property
    def is_active(self) -> bool:
        return self.active_count > 0

    @property
    def active_count(self) -> int:
        return sum(
            value is not None
            for value in (self.category, self.age, self.has_author, self.read_status, self.min_length)
        )

    def cycle_category(self, categories: list[str]) -> "FilterOptions":
        return replace(self, category=_next([None, *categories], self.category))

    def cycle_age(self) -> "FilterOptions":
        return replace(self, age=_next(_AGE_CYCLE, self.age))

    def cycle_author(self) -> "FilterOptions":
        return replace(self, has_author=_next(_TRI_CYCLE, self.has_author))

    def cycle_read_status(self) -> "FilterOptions":
        return replace(self, read_status=_next(_TRI_CYCLE, self.read_status))

    def cycle_length(self) -> "FilterOptions":
        return replace(self, min_length=_next([None, *LENGTH_STEPS], self.min_length))

    def matches(self, item: Item, feed: Feed | None, now: datetime | None = None) -> bool:
        if self.category is not None and (feed is None or feed.category != self.category):
            return False

        if self.age is not None:
            if item.published_at is None:
                return False
            age = (now or utcnow()) - item.published_at
            if self.age is TimeFilter.TODAY and age > timedelta(hours=24):
                return False
            if self.age is TimeFilter.THIS_WEEK and age > timedelta(days=7):
                return False
            if self.age is TimeFilter.THIS_MONTH and age > timedelta(days=30):
                return False
            if self.age is TimeFilter.OLDER and age <= timedelta(days=30):
                return False

        if self.has_author is not None and self.has_author != bool(item.author):
            return False

        if self.read_status is not None and self.read_status != item.is_read:
            return False

        if self.min_length is not None and len(item.summary or "") < self.min_length:
            return False

        return True

    def summary(self) -> str:
        parts = []
        if self.category is not None:
            parts.append(f"Category: {self.category}")
        if self.age is not None:
            parts.append(f"Age: {self.age.value}")
        if self.has_author is not None:
            parts.append("Author: " + ("With author" if self.has_author else "No author"))
        if self.read_status is not None:
            parts.append("Status: " + ("Read" if self.read_status else "Unread"))
        if self.min_length is not None:
            parts.append(f"Length: {LENGTH_LABELS.get(self.min_length, 'Custom')}")
        return " | ".join(parts) if parts else "No filters active"
