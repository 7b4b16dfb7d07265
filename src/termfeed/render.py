"""Turn a RenderModel into rich renderables."""

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from termfeed.app import RenderModel, Row

CHROME_LINES = 6
TABS = (("Dashboard", "Dashboard"), ("FeedList", "Feeds"))


def body_height(height: int) -> int:
    """Lines available for rows or detail text in a frame of height lines."""
    return max(1, height - CHROME_LINES)


def window(rows: list[Row], height: int) -> list[Row]:
    """Slice rows so the selected one stays visible in height lines."""
    if height <= 0 or len(rows) <= height:
        return rows
    selected = next((i for i, r in enumerate(rows) if r.selected), 0)
    start = max(0, min(selected - height // 2, len(rows) - height))
    return rows[start:start + height]


def render_tabs(model: RenderModel) -> Text:
    text = Text()
    for view, label in TABS:
        style = "bold reverse cyan" if model.view == view else "dim"
        text.append(f" {label} ", style=style)
        text.append(" ")
    if model.loading:
        text.append(f" {model.loading} refreshing", style="yellow")
    return text


def render_rows(rows: list[Row], height: int) -> Table:
    table = Table.grid(expand=True, padding=(0, 1))
    table.add_column(width=2)
    table.add_column(ratio=3, no_wrap=True, overflow="ellipsis")
    table.add_column(ratio=2, no_wrap=True, overflow="ellipsis", justify="right")
    for row in window(rows, height):
        marker = "★" if row.bookmarked else ("•" if not row.read else " ")
        style = "dim" if row.read else ""
        if row.error:
            style = "red"
        if row.selected:
            style = f"{style} reverse".strip()
        table.add_row(marker, Text(row.text, style=style), Text(row.meta, style="dim"))
    return table


def render_detail(lines: list[str], height: int) -> Text:
    text = Text()
    for index, line in enumerate(lines[:max(height, 1)]):
        if index:
            text.append("\n")
        text.append(line, style="bold" if index == 0 else "")
    return text


def render(model: RenderModel, height: int) -> Panel:
    """Full-screen frame for the given terminal height."""
    lines = body_height(height)
    if model.detail is not None:
        body = render_detail(model.detail, lines)
    elif model.rows:
        body = render_rows(model.rows, lines)
    else:
        body = Text("Nothing here yet.", style="dim")

    footer = []
    if model.banner:
        footer.append(Text(model.banner, style="bold white on red"))
    if model.prompt is not None:
        footer.append(Text(f"{model.prompt}▏", style="bold"))
    footer.append(Text(model.status, style="dim"))

    return Panel(
        Group(render_tabs(model), Text(""), body, Text(""), *footer),
        title=Text(f"termfeed | {model.title}"),
        border_style="cyan",
        height=height,
    )
