import os
import sys
import time

PY = sys.executable
SLEEPER = [PY, "-c", "import time; time.sleep(30)"]


def pid_alive(pid):
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    stat = f"/proc/{pid}/stat"
    if os.path.exists(stat):
        with open(stat) as f:
            # Zombies wait for a reaper that may not exist in a container.
            return f.read().rsplit(")", 1)[1].split()[0] != "Z"
    return True


def wait_until(predicate, timeout=10, interval=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def wait_for_file(path, timeout=10):
    return wait_until(lambda: os.path.exists(path) and os.path.getsize(path) > 0, timeout)
