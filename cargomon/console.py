import os
import sys

GREEN = "\033[92m"
ORANGE = "\033[38;5;208m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"

PREFIX = "[cargomon]"

# NO_COLOR convention: https://no-color.org
_state = {'color': not os.environ.get("NO_COLOR")}


def set_color(enabled):
    _state['color'] = bool(enabled)


def _paint(text, color):
    if not _state['color'] or not color:
        return text
    return f"{color}{text}{RESET}"


def _emit(message, color=None, stream=None):
    stream = stream or sys.stdout
    print(_paint(f"{PREFIX} {message}", color), file=stream, flush=True)


def info(message):
    _emit(message)


def detail(message):
    _emit(message, DIM)


def success(message):
    _emit(message, GREEN)


def warning(message):
    _emit(message, ORANGE)


def error(message):
    _emit(message, RED, stream=sys.stderr)
