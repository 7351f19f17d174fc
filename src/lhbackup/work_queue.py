"""In-memory priority work queue drained by a fixed pool of worker threads."""

import itertools
import logging
import queue
import threading
from typing import Callable, List, Optional

from .models import ChangeEvent, PendingWorkItem

logger = logging.getLogger(__name__)


class WorkQueue:
    """
    Bounded-concurrency priority queue for change events.
    
    Features:
    - Higher priority items are dequeued first, FIFO within a priority
    - At most ``concurrency`` items are processed at once
    - ``join`` blocks until every pushed item has been processed
    - Handler errors are logged and never stop the workers
    """

    def __init__(
        self,
        handler: Callable[[ChangeEvent], None],
        concurrency: int = 10,
        name: str = "work",
    ):
        """
        Initialize the work queue.
        
        Args:
            handler: Called once per event on a worker thread
            concurrency: Number of worker threads
            name: Prefix for worker thread names and log lines
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.handler = handler
        self.concurrency = concurrency
        self.name = name
        self._queue: "queue.PriorityQueue[PendingWorkItem]" = queue.PriorityQueue()
        self._sequence = itertools.count()
        self._unfinished = 0
        self._idle = threading.Condition()
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()

    def start(self) -> None:
        """Start the worker threads. Does nothing if already started."""
        with self._lock:
            if self._threads:
                return
            self._stop_event.clear()
            for i in range(self.concurrency):
                thread = threading.Thread(
                    target=self._worker_loop,
                    name=f"{self.name}-{i}",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)

    def push(self, event: ChangeEvent, priority: Optional[int] = None) -> bool:
        """
        Queue an event.
        
        Args:
            event: The change event
            priority: Overrides the event kind's default priority
            
        Returns:
            False if the queue is stopped and the event was dropped
        """
        if self._stop_event.is_set():
            logger.debug(f"{self.name}: dropping {event.path}, queue is stopped")
            return False
        item = PendingWorkItem(
            priority=event.priority if priority is None else priority,
            sequence=next(self._sequence),
            event=event,
        )
        with self._idle:
            self._unfinished += 1
        self._queue.put(item)
        return True

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until all pushed items are processed.
        
        Args:
            timeout: Seconds to wait, or None to wait forever
            
        Returns:
            True if the queue drained, False on timeout or stop
        """
        with self._idle:
            self._idle.wait_for(
                lambda: self._unfinished == 0 or self._stop_event.is_set(),
                timeout,
            )
            return self._unfinished == 0 and not self._stop_event.is_set()

    def stop(self, timeout: float = 5.0) -> int:
        """
        Stop the workers and drop anything still queued.
        
        Items already being processed are allowed to finish.
        
        Returns:
            Number of queued items that were dropped
        """
        self._stop_event.set()
        with self._idle:
            self._idle.notify_all()

        with self._lock:
            threads = list(self._threads)
            self._threads.clear()
        for thread in threads:
            thread.join(timeout=timeout)

        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
            dropped += 1
        with self._idle:
            self._unfinished -= dropped
            self._idle.notify_all()
        return dropped

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                item = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                if not self._stop_event.is_set():
                    self.handler(item.event)
            except Exception:
                logger.exception(f"{self.name}: failed to process {item.event.path}")
            finally:
                with self._idle:
                    self._unfinished -= 1
                    if self._unfinished == 0:
                        self._idle.notify_all()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return bool(self._threads)

    def __len__(self) -> int:
        """Number of items queued or in progress."""
        with self._idle:
            return self._unfinished
