"""
The watch -> debounce -> build -> run loop.

LoopController owns the loop state, the current build task and the current
child process. Watcher callbacks, debounce timers and process monitor
threads never touch that state; they post messages on the controller's
queue and ``run()`` applies them one at a time.
"""

import os
import queue
import time
from typing import Optional

from . import console
from .builder import BuildRunner, BuildTask
from .config import Config
from .debounce import Debouncer
from .events import (
    BuildFinished,
    BuildStatus,
    DebounceElapsed,
    FileChanged,
    LoopState,
    ProcessExited,
    ProcessStarted,
    ShutdownRequested,
    WatchFailed,
)
from .exceptions import SpawnError, SupervisorError, WatchError
from .filter import relevant
from .source import ChangeSource
from .supervisor import ChildProcess, ProcessSupervisor

EXIT_OK = 0
EXIT_FATAL = 1

# How often the watcher's health is checked while no message arrives.
HEALTH_CHECK_INTERVAL = 1.0


class LoopController:
    def __init__(self, config: Config, source=None, builder=None, supervisor=None):
        self.config = config
        self.source = source if source is not None else ChangeSource(config.roots)
        self.builder = builder if builder is not None else BuildRunner(
            cwd=config.project_dir, grace_period=config.grace_period)
        self.supervisor = supervisor if supervisor is not None else ProcessSupervisor(
            cwd=config.project_dir, grace_period=config.grace_period)
        self.debouncer = Debouncer(config.debounce, self._on_debounce_elapsed)

        self.state = LoopState.IDLE
        self.task: Optional[BuildTask] = None
        self.child: Optional[ChildProcess] = None
        self.exit_code = EXIT_OK
        self.transitions = [(time.monotonic(), self.state)]

        # A change arrived while building; its debounce may already be over.
        self._change_during_build = False
        self._trigger_during_build = False

        self._queue = queue.SimpleQueue()

    # Posting side. Safe from any thread and from signal handlers.

    def post(self, message):
        self._queue.put(message)

    def request_shutdown(self, reason="shutdown requested"):
        self.post(ShutdownRequested(reason))

    def _on_source_event(self, event):
        if relevant(event.path, self.config.rule):
            self.post(FileChanged(event))

    def _on_source_error(self, error):
        self.post(WatchFailed(error))

    def _on_debounce_elapsed(self, generation):
        self.post(DebounceElapsed(generation))

    def _on_build_complete(self, task):
        self.post(BuildFinished(task))

    def _on_child_started(self, child):
        self.post(ProcessStarted(child))

    def _on_child_exited(self, child):
        self.post(ProcessExited(child))

    # Serialized side. Everything below runs on the thread inside run().

    def run(self) -> int:
        """Run until shutdown. Returns the process exit code."""
        try:
            self.source.start(self._on_source_event, self._on_source_error)
        except WatchError as e:
            console.error(f"Watch error: {e}")
            return EXIT_FATAL

        console.info(f"Watching {', '.join(self._display(r) for r in self.source.roots)}")
        console.info("Watching for changes. Press Ctrl+C to exit.")
        try:
            if self.config.initial_build:
                self._start_build()
            while self.state != LoopState.STOPPED:
                try:
                    message = self._queue.get(timeout=HEALTH_CHECK_INTERVAL)
                except queue.Empty:
                    self.source.check()
                    continue
                self.dispatch(message)
        except (WatchError, SupervisorError) as e:
            console.error(f"Fatal: {e}")
            self.exit_code = EXIT_FATAL
        finally:
            self._shutdown()
        return self.exit_code

    def dispatch(self, message):
        handler = {
            FileChanged: self._handle_change,
            DebounceElapsed: self._handle_debounce,
            BuildFinished: self._handle_build_finished,
            ProcessStarted: self._handle_started,
            ProcessExited: self._handle_exited,
            WatchFailed: self._handle_watch_failed,
            ShutdownRequested: self._handle_shutdown,
        }[type(message)]
        handler(message)

    def _set_state(self, state):
        if state != self.state:
            self.transitions.append((time.monotonic(), state))
        self.state = state

    def _handle_change(self, message):
        console.detail(f"File {message.event.kind.value}: {self._display(message.event.path)}")
        if self.state == LoopState.IDLE:
            console.info("Change detected. Rebuilding...")
            self._set_state(LoopState.DEBOUNCING)
        elif self.state == LoopState.BUILDING:
            # Let the running build finish; a new cycle follows it.
            self._change_during_build = True
            self._trigger_during_build = False
        elif self.state in (LoopState.LAUNCHING, LoopState.RUNNING):
            console.info("Change detected. Stopping the program and rebuilding...")
            self._terminate_child()
            self._set_state(LoopState.DEBOUNCING)
        elif self.state != LoopState.DEBOUNCING:
            return
        self.debouncer.poke()

    def _handle_debounce(self, message):
        if not self.debouncer.is_current(message.generation):
            return
        if self.state == LoopState.DEBOUNCING:
            self._start_build()
        elif self.state == LoopState.BUILDING and self._change_during_build:
            self._trigger_during_build = True

    def _start_build(self):
        self._terminate_child()
        if self.task is not None and self.task.running:
            self.builder.cancel(self.task)
        self._change_during_build = False
        self._trigger_during_build = False

        command = self.config.build_command
        console.info(f"Running {' '.join(command)}")
        try:
            self.task = self.builder.start(command, on_complete=self._on_build_complete)
        except SpawnError as e:
            console.error(f"Build failed. {e}")
            self.task = None
            self._set_state(LoopState.IDLE)
            self._continue_watching()
            return
        self._set_state(LoopState.BUILDING)

    def _handle_build_finished(self, message):
        task = message.task
        if task is not self.task or self.state != LoopState.BUILDING:
            # Superseded or cancelled; its process is already reaped.
            return

        if task.status == BuildStatus.SUCCEEDED:
            if self._change_during_build:
                console.warning("Build succeeded but files changed meanwhile; rebuilding.")
                self._resume_after_build()
                return
            console.success("Build successful. Running the program...")
            self._launch()
            return

        if task.status == BuildStatus.FAILED:
            console.error(f"Build failed. '{' '.join(task.command)}' exited with code {task.returncode}")
        if self._change_during_build:
            self._resume_after_build()
            return
        self._set_state(LoopState.IDLE)
        self._continue_watching()

    def _resume_after_build(self):
        if self._trigger_during_build:
            self._start_build()
        else:
            self._set_state(LoopState.DEBOUNCING)

    def _launch(self):
        command = self.config.launch_command
        self._set_state(LoopState.LAUNCHING)
        try:
            self.child = self.supervisor.launch(
                command, on_start=self._on_child_started, on_exit=self._on_child_exited)
        except SpawnError as e:
            console.error(f"Program execution failed. {e}")
            self.child = None
            self._set_state(LoopState.IDLE)
            self._continue_watching()

    def _handle_started(self, message):
        if message.child is self.child and self.state == LoopState.LAUNCHING:
            self._set_state(LoopState.RUNNING)

    def _handle_exited(self, message):
        child = message.child
        if child is not self.child:
            return
        self.child = None
        if child.returncode == 0:
            console.success("Program executed successfully.")
        else:
            console.error(f"Program execution failed (exit code {child.returncode}).")
        if self.state in (LoopState.LAUNCHING, LoopState.RUNNING):
            self._set_state(LoopState.IDLE)
            self._continue_watching()

    def _handle_watch_failed(self, message):
        raise message.error

    def _handle_shutdown(self, message):
        console.warning(f"Shutting down: {message.reason}")
        self._shutdown()

    def _terminate_child(self):
        child, self.child = self.child, None
        if child is not None:
            # Also reaps stragglers left in the group of a child that already exited.
            self.supervisor.terminate(child, self.config.grace_period)

    def _continue_watching(self):
        console.info("Continuing to watch for changes...")

    def _shutdown(self):
        if self.state == LoopState.STOPPED:
            return
        self._set_state(LoopState.STOPPED)
        self.debouncer.cancel()
        try:
            if self.task is not None and self.task.running:
                self.builder.cancel(self.task, self.config.grace_period)
            self._terminate_child()
        except SupervisorError as e:
            console.error(f"Fatal: {e}")
            self.exit_code = EXIT_FATAL
        finally:
            self.source.stop()

    def _display(self, path):
        try:
            return os.path.relpath(path, self.config.project_dir)
        except ValueError:
            return path
