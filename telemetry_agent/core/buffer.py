"""
Thread-safe snapshot queues shared between the sampler and its consumers.
"""
import threading
from collections import deque
from typing import Deque, List, Optional, Tuple

from telemetry_agent.monitoring.models import Snapshot
from telemetry_agent.utils import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_SIZE = 10000


class SnapshotBuffer:
    """
    FIFO of snapshots awaiting the next flush cycle.

    Any thread may :meth:`put`; the flush scheduler is the only consumer and
    takes everything at once with :meth:`drain`. The buffer is bounded: when
    full, the oldest snapshot is dropped to make room and the drop is counted.

    Args:
        max_size: Maximum number of queued snapshots.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE) -> None:
        if max_size <= 0:
            raise ValueError("Buffer max_size must be positive.")
        self.max_size = max_size
        self._items: Deque[Snapshot] = deque()
        self._lock = threading.Lock()
        self._dropped = 0

    def put(self, snapshot: Snapshot) -> None:
        """Enqueues a snapshot without blocking."""
        dropped = False
        with self._lock:
            if len(self._items) >= self.max_size:
                self._items.popleft()
                self._dropped += 1
                dropped = True
            self._items.append(snapshot)
        if dropped:
            logger.warning(f"Snapshot buffer full ({self.max_size}); dropped oldest snapshot. Total dropped: {self._dropped}")

    def drain(self) -> List[Snapshot]:
        """
        Atomically removes and returns every queued snapshot in enqueue order.

        Snapshots put while a drain is in progress land in the next drain.
        """
        with self._lock:
            items, self._items = self._items, deque()
        return list(items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    @property
    def dropped_count(self) -> int:
        with self._lock:
            return self._dropped


class SnapshotBroadcaster:
    """
    Holds the most recent snapshot and wakes waiters when a new one arrives.

    Each published snapshot gets a sequence number so a consumer can wait for
    "anything newer than what I last sent". Nothing is replayed: a consumer
    that falls behind only ever sees the latest snapshot.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._latest: Optional[Snapshot] = None
        self._sequence = 0

    def publish(self, snapshot: Snapshot) -> None:
        with self._condition:
            self._latest = snapshot
            self._sequence += 1
            self._condition.notify_all()

    @property
    def sequence(self) -> int:
        with self._condition:
            return self._sequence

    def wait_for_next(self, after_sequence: int, timeout: float) -> Optional[Tuple[int, Snapshot]]:
        """
        Waits for a snapshot newer than ``after_sequence``.

        :param after_sequence: Sequence number of the last snapshot seen
        :type after_sequence: int
        :param timeout: Maximum time to wait in seconds
        :type timeout: float
        :return: (sequence, snapshot), or None on timeout
        :rtype: Optional[Tuple[int, Snapshot]]
        """
        with self._condition:
            if not self._condition.wait_for(lambda: self._sequence > after_sequence, timeout=timeout):
                return None
            return self._sequence, self._latest
