import logging
import threading

logger = logging.getLogger(__name__)


class PauseSignal:
    """
    Shared flag telling the scheduler to stop dispatching new work.

    Safe to flip from any thread (or a signal handler). In-flight tasks are
    never interrupted; only dispatch of new ones is held back.
    """

    def __init__(self, paused: bool = False):
        self._paused = threading.Event()
        if paused:
            self._paused.set()

    @property
    def is_paused(self) -> bool:
        return self._paused.is_set()

    def pause(self) -> None:
        if not self._paused.is_set():
            logger.info("Dispatch paused")
        self._paused.set()

    def resume(self) -> None:
        if self._paused.is_set():
            logger.info("Dispatch resumed")
        self._paused.clear()
