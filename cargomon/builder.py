import itertools
import threading
import time
from typing import Callable, List, Optional

from . import process
from .events import BuildStatus

_task_ids = itertools.count(1)


class BuildTask:
    """One build attempt, from spawn to its terminal status."""

    TERMINAL = (BuildStatus.SUCCEEDED, BuildStatus.FAILED, BuildStatus.CANCELLED)

    def __init__(self, command: List[str]):
        self.id = next(_task_ids)
        self.command = list(command)
        self.status = BuildStatus.PENDING
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.returncode: Optional[int] = None
        self._popen = None
        self._lock = threading.Lock()
        self._done = threading.Event()

    @property
    def pid(self):
        return self._popen.pid if self._popen else None

    @property
    def running(self) -> bool:
        return self.status == BuildStatus.RUNNING

    @property
    def finished(self) -> bool:
        return self.status in self.TERMINAL

    def _complete(self, returncode):
        with self._lock:
            self.returncode = returncode
            self.finished_at = time.monotonic()
            # A cancelled task keeps its status whatever the exit code was.
            if self.status != BuildStatus.CANCELLED:
                self.status = BuildStatus.SUCCEEDED if returncode == 0 else BuildStatus.FAILED
        self._done.set()

    def __repr__(self):
        return f"<BuildTask #{self.id} {self.status.value} {' '.join(self.command)!r}>"


class BuildRunner:
    """
    Runs the build command, one task at a time.

    The build inherits stdout/stderr so compiler diagnostics land in the
    user's terminal. Completion is reported from a monitor thread through
    the ``on_complete`` callback given to ``start``.
    """

    def __init__(self, cwd=None, grace_period: float = 3.0):
        self.cwd = cwd
        self.grace_period = grace_period
        self.current: Optional[BuildTask] = None

    def start(self, command, on_complete: Optional[Callable] = None) -> BuildTask:
        """
        Spawn ``command`` and return its task.

        A task that is still running is cancelled first. Raises SpawnError
        if the command cannot be started.
        """
        if self.current is not None and self.current.running:
            self.cancel(self.current)

        task = BuildTask(command)
        self.current = task
        try:
            task._popen = process.spawn(task.command, cwd=self.cwd)
        except Exception:
            task._complete(None)
            raise
        task.started_at = time.monotonic()
        task.status = BuildStatus.RUNNING

        def _monitor():
            returncode = task._popen.wait()
            task._complete(returncode)
            if on_complete is not None:
                on_complete(task)

        threading.Thread(target=_monitor, name=f"build-{task.id}", daemon=True).start()
        return task

    def cancel(self, task: BuildTask, grace_period: Optional[float] = None) -> bool:
        """
        Terminate a running build and wait until its process group is gone.

        Returns True if the task was running and is now cancelled.
        """
        if grace_period is None:
            grace_period = self.grace_period
        with task._lock:
            if task.finished or task._popen is None:
                return False
            task.status = BuildStatus.CANCELLED
        process.stop(task._popen, grace_period)
        task._done.wait(timeout=process.KILL_CONFIRM_TIMEOUT)
        return True

    def wait(self, task: BuildTask, timeout: Optional[float] = None) -> BuildStatus:
        task._done.wait(timeout)
        return task.status
