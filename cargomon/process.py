"""
Spawning and stopping child processes.

Children are started in their own process group (a new session on POSIX,
CREATE_NEW_PROCESS_GROUP on Windows) so that stopping one also stops
anything it spawned, e.g. the rustc processes under ``cargo build``.
"""

import errno
import os
import signal
import subprocess
import sys
import time

from .exceptions import SpawnError, SupervisorError

IS_WINDOWS = sys.platform == "win32"

# errno values worth a second attempt: the OS was briefly out of something.
TRANSIENT_SPAWN_ERRORS = {errno.EAGAIN, errno.ENOMEM, errno.EMFILE, errno.ENFILE}

SPAWN_RETRY_DELAY = 0.25

# How long to wait for a process after SIGKILL before giving up on it.
KILL_CONFIRM_TIMEOUT = 5.0


def _group_kwargs():
    if IS_WINDOWS:
        return {'creationflags': subprocess.CREATE_NEW_PROCESS_GROUP}
    return {'start_new_session': True}


def spawn(command, cwd=None, env=None):
    """
    Start ``command`` with inherited stdio in a new process group.

    A spawn that fails with a transient resource error is retried once;
    anything else, or a second failure, raises SpawnError.
    """
    command = list(command)
    if not command:
        raise SpawnError(command, "empty command")

    attempts = 2
    for attempt in range(attempts):
        try:
            return subprocess.Popen(command, cwd=cwd, env=env, **_group_kwargs())
        except OSError as e:
            if e.errno in TRANSIENT_SPAWN_ERRORS and attempt + 1 < attempts:
                time.sleep(SPAWN_RETRY_DELAY)
                continue
            raise SpawnError(command, e) from e


def _kill_stragglers(popen):
    if IS_WINDOWS:
        return
    try:
        os.killpg(popen.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


def _signal_group(popen, sig):
    if popen.poll() is not None:
        return
    try:
        if IS_WINDOWS:
            if sig == signal.SIGTERM:
                popen.send_signal(signal.CTRL_BREAK_EVENT)
            else:
                popen.kill()
        else:
            os.killpg(popen.pid, sig)
    except (ProcessLookupError, PermissionError):
        # Group already gone, or only zombies left in it.
        pass


def stop(popen, grace_period):
    """
    Stop ``popen`` and its process group: terminate, wait up to
    ``grace_period`` seconds, then kill.

    Returns True if the process had to be killed. Raises SupervisorError if
    the process is still alive after the kill.
    """
    if popen.poll() is not None:
        # The leader is reaped but its group may still hold stragglers.
        _kill_stragglers(popen)
        return False

    grace_period = max(0.0, float(grace_period))
    if grace_period > 0:
        _signal_group(popen, signal.SIGTERM)
        try:
            popen.wait(timeout=grace_period)
            _kill_stragglers(popen)
            return False
        except subprocess.TimeoutExpired:
            pass

    if IS_WINDOWS:
        popen.kill()
    else:
        try:
            os.killpg(popen.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            popen.kill()
    try:
        popen.wait(timeout=KILL_CONFIRM_TIMEOUT)
    except subprocess.TimeoutExpired as e:
        raise SupervisorError(f"Process {popen.pid} did not die after kill") from e
    return True
