"""Raw keyboard input for the terminal UI."""

import codecs
import os
import queue
import select
import sys
import termios
import threading
import tty

ESCAPES = {
    "[A": "up",
    "[B": "down",
    "[H": "home",
    "[F": "end",
    "[Z": "backtab",
    "[1~": "home",
    "[4~": "end",
    "[5~": "pgup",
    "[6~": "pgdn",
    "OH": "home",
    "OF": "end",
}
SINGLE = {
    "\r": "enter",
    "\n": "enter",
    "\t": "tab",
    "\x7f": "backspace",
    "\b": "backspace",
    "\x03": "ctrl+c",
}


def decode_key(data: str) -> str:
    """Map one raw key sequence to a key name."""
    if data in SINGLE:
        return SINGLE[data]
    if data.startswith("\x1b"):
        return ESCAPES.get(data[1:], "esc")
    return data


def read_key(fd: int, decoder: codecs.IncrementalDecoder) -> str | None:
    """Read one key from fd, which must have data ready.

    Multibyte UTF-8 characters are read whole. Returns None at end of input
    or when a character is cut short.
    """
    data = ""
    while not data:
        chunk = os.read(fd, 1)
        if not chunk:
            return None
        data = decoder.decode(chunk)
        if not data and not select.select([fd], [], [], 0.05)[0]:
            decoder.reset()
            return None
    if data == "\x1b":
        while select.select([fd], [], [], 0.01)[0]:
            chunk = os.read(fd, 1)
            if not chunk:
                break
            data += decoder.decode(chunk)
            if len(data) > 2 and (data[-1].isalpha() or data[-1] == "~"):
                break
            if len(data) >= 6:
                break
    return decode_key(data)


def key_reader(keys: "queue.Queue[str]", stop: threading.Event) -> None:
    """Read keys from stdin in cbreak mode until stop is set."""
    fd = sys.stdin.fileno()
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    old_settings = termios.tcgetattr(fd)
    try:
        tty.setcbreak(fd)
        while not stop.is_set():
            ready, _, _ = select.select([fd], [], [], 0.1)
            if not ready:
                continue
            key = read_key(fd, decoder)
            if key is not None:
                keys.put(key)
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
