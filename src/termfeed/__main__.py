"""Entry point for termfeed: python -m termfeed"""

import asyncio
import logging
import os
import queue
import sys
import threading
import time

from rich.console import Console
from rich.live import Live

from termfeed.app import Application
from termfeed.config import AppConfig, load_config
from termfeed.database import Database
from termfeed.errors import PersistenceFailure
from termfeed.render import body_height, render
from termfeed.terminal import key_reader


def setup_logging(cfg: AppConfig) -> None:
    directory = os.path.dirname(cfg.logging.filename)
    if directory:
        os.makedirs(directory, exist_ok=True)
    logging.basicConfig(
        filename=cfg.logging.filename,
        level=cfg.logging.level,
        format=cfg.logging.format,
        datefmt="%H:%M:%S",
    )
    # Quiet noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def ui_loop(app: Application, console: Console, keys: "queue.Queue[str]") -> None:
    """Tick the application at a fixed rate and redraw."""
    tick = app.config.ui.tick_ms / 1000
    last = time.monotonic()
    with Live(console=console, screen=True, auto_refresh=False) as live:
        while not app.quit_requested:
            pending = []
            while True:
                try:
                    pending.append(keys.get_nowait())
                except queue.Empty:
                    break

            now = time.monotonic()
            height = console.size.height
            model = app.tick(now - last, pending, viewport_height=body_height(height))
            last = now
            live.update(render(model, height), refresh=True)
            await asyncio.sleep(tick)


async def main() -> None:
    """Initialize and run termfeed."""
    cfg = load_config()
    setup_logging(cfg)
    logger = logging.getLogger("termfeed")

    db = Database(cfg.storage.db_path)
    try:
        db.connect()
    except PersistenceFailure as e:
        logger.error("Running without persistence: %s", e)
        db = None

    app = Application.create(cfg, db)
    app.start()

    keys: queue.Queue[str] = queue.Queue()
    stop = threading.Event()
    reader = asyncio.create_task(asyncio.to_thread(key_reader, keys, stop))

    try:
        await ui_loop(app, Console(), keys)
    finally:
        stop.set()
        await reader
        app.close()
        if db is not None:
            db.close()


def run() -> None:
    if not sys.stdin.isatty():
        print("termfeed needs an interactive terminal.", file=sys.stderr)
        sys.exit(1)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
