import threading
import time
from typing import Callable, List, Optional

from . import process
from .events import ProcessState


class ChildProcess:
    """The application instance started after a successful build."""

    def __init__(self, command: List[str]):
        self.command = list(command)
        self.state = ProcessState.STARTING
        self.pid: Optional[int] = None
        self.started_at: Optional[float] = None
        self.terminated_at: Optional[float] = None
        self.returncode: Optional[int] = None
        self._popen = None
        self._lock = threading.Lock()
        self._exited = threading.Event()

    @property
    def alive(self) -> bool:
        return self.state in (ProcessState.STARTING, ProcessState.RUNNING)

    def _mark_running(self):
        with self._lock:
            if self.state == ProcessState.STARTING:
                self.state = ProcessState.RUNNING

    def _mark_exited(self, returncode):
        with self._lock:
            self.returncode = returncode
            if self.state != ProcessState.KILLED:
                self.state = ProcessState.EXITED
        self._exited.set()

    def __repr__(self):
        return f"<ChildProcess pid={self.pid} {self.state.value}>"


class ProcessSupervisor:
    """
    Sole owner of the running application process.

    Nothing else signals or waits on a ChildProcess. Only one child is
    expected at a time; the loop controller guarantees that by always
    terminating the previous child before launching a new one.
    """

    def __init__(self, cwd=None, grace_period: float = 3.0):
        self.cwd = cwd
        self.grace_period = grace_period
        self.current: Optional[ChildProcess] = None

    def launch(self, command, on_start: Optional[Callable] = None,
               on_exit: Optional[Callable] = None) -> ChildProcess:
        """
        Start the executable. ``on_start`` and ``on_exit`` are called from
        the monitor thread with the ChildProcess.

        Raises SpawnError if the process cannot be started.
        """
        child = ChildProcess(command)
        child._popen = process.spawn(child.command, cwd=self.cwd)
        child.pid = child._popen.pid
        child.started_at = time.monotonic()
        self.current = child

        def _monitor():
            child._mark_running()
            if on_start is not None:
                on_start(child)
            returncode = child._popen.wait()
            child._mark_exited(returncode)
            if on_exit is not None:
                on_exit(child)

        threading.Thread(target=_monitor, name=f"child-{child.pid}", daemon=True).start()
        return child

    def terminate(self, child: ChildProcess, grace_period: Optional[float] = None) -> Optional[int]:
        """
        Ask the child to stop, then kill it once ``grace_period`` runs out.

        Returns the exit status. Raises SupervisorError when the process
        cannot be confirmed dead.
        """
        if grace_period is None:
            grace_period = self.grace_period
        if child._popen is None:
            return None
        with child._lock:
            was_alive = child.alive
            if was_alive:
                child.state = ProcessState.KILLED
        process.stop(child._popen, grace_period)
        if was_alive:
            child.terminated_at = time.monotonic()
        # The monitor thread reaps in parallel; let it record the exit.
        child._exited.wait(timeout=process.KILL_CONFIRM_TIMEOUT)
        if self.current is child:
            self.current = None
        return child._popen.returncode

    def wait(self, child: ChildProcess, timeout: Optional[float] = None) -> Optional[int]:
        """Block up to ``timeout`` seconds; returns the exit status or None."""
        if not child._exited.wait(timeout):
            return None
        return child.returncode
