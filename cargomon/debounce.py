import threading
from typing import Callable, Optional


class Debouncer:
    """
    Coalesces a burst of changes into one trigger.

    Every ``poke`` restarts the quiet window; ``on_trigger(generation)`` runs
    on the timer thread once ``window`` seconds pass without another poke.
    A window of 0 triggers straight from ``poke``.
    """

    def __init__(self, window: float, on_trigger: Callable[[int], None]):
        if window < 0:
            raise ValueError(f"Debounce window must be >= 0, got {window}")
        self.window = window
        self.on_trigger = on_trigger
        self._generation = 0
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def poke(self):
        with self._lock:
            self._generation += 1
            generation = self._generation
            if self._timer:
                self._timer.cancel()
                self._timer = None
            if self.window > 0:
                self._timer = threading.Timer(self.window, self._fire, args=(generation,))
                self._timer.daemon = True
                self._timer.start()
                return
        self.on_trigger(generation)

    def cancel(self):
        with self._lock:
            # Bumping the generation voids a timer that is already firing.
            self._generation += 1
            if self._timer:
                self._timer.cancel()
                self._timer = None

    def _fire(self, generation):
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        self.on_trigger(generation)
