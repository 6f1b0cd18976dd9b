"""
Progress and cancellation shared by the dispatcher and its workers.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ProgressVisitor:
    """
    Cancellation token with a step counter.

    One instance is shared by every worker of a run. Cancellation is a
    one-way flag: once set it stays set until reset() is called for a new run.

    Example:
        progress = ProgressVisitor(total_steps=len(receivers),
                                   progress_callback=lambda done, total: print(done, total))
        engine.run(out, progress)

        # From another thread:
        progress.cancel()
    """

    def __init__(
        self,
        total_steps: int = 0,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ):
        self.total_steps = total_steps
        self.progress_callback = progress_callback
        self._canceled = threading.Event()
        self._lock = threading.Lock()
        self._steps_done = 0

    def is_canceled(self) -> bool:
        return self._canceled.is_set()

    def cancel(self) -> None:
        if not self._canceled.is_set():
            logger.info("Computation cancellation requested")
        self._canceled.set()

    def end_step(self) -> None:
        """Record one finished receiver."""
        with self._lock:
            self._steps_done += 1
            done = self._steps_done
        if self.progress_callback is not None:
            self.progress_callback(done, self.total_steps)

    @property
    def steps_done(self) -> int:
        with self._lock:
            return self._steps_done

    def reset(self, total_steps: Optional[int] = None) -> None:
        """Clear cancellation and counters for a new run."""
        self._canceled.clear()
        with self._lock:
            self._steps_done = 0
        if total_steps is not None:
            self.total_steps = total_steps
