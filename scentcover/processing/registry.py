"""
Source registry: one SourceUnifier per source id, created on first sight.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from ..models import SourceActivity, SourceCoverage
from .unifier import SourceUnifier, UnifierConfig

logger = logging.getLogger(__name__)


class SourceRegistry:
    """
    Thread-safe map of source id to running unifier.

    Listeners registered with add_listener() are called with every
    snapshot any unifier publishes; the aggregator uses this to mark
    itself dirty.
    """

    def __init__(self, config: Optional[UnifierConfig] = None):
        self.config = config or UnifierConfig()
        self._unifiers: Dict[str, SourceUnifier] = {}
        self._lock = threading.Lock()
        self._listeners: List[Callable[[SourceCoverage], None]] = []
        self._closed = False

    def add_listener(self, listener: Callable[[SourceCoverage], None]) -> None:
        self._listeners.append(listener)

    def _forward(self, snapshot: SourceCoverage) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(f"Callback error: {e}")

    def get_or_create(self, source_id: str, source_name: str = "") -> Optional[SourceUnifier]:
        """
        Return the unifier for source_id, starting a new one if needed.

        Returns None once the registry has been stopped.
        """
        unifier = self._unifiers.get(source_id)
        if unifier is not None:
            return unifier

        with self._lock:
            if self._closed:
                return None
            unifier = self._unifiers.get(source_id)
            if unifier is None:
                unifier = SourceUnifier(source_id, source_name or source_id, self.config)
                unifier.add_update_callback(self._forward)
                unifier.start()
                self._unifiers[source_id] = unifier
                logger.info(f"Registered source {source_id} ({unifier.source_name})")
        return unifier

    def get(self, source_id: str) -> Optional[SourceUnifier]:
        with self._lock:
            return self._unifiers.get(source_id)

    def unifiers(self) -> List[SourceUnifier]:
        with self._lock:
            return list(self._unifiers.values())

    def snapshots(self) -> List[SourceCoverage]:
        """Latest published snapshot of every source that has one."""
        return [u.snapshot for u in self.unifiers() if u.snapshot is not None]

    def activity(self) -> List[SourceActivity]:
        return [u.activity() for u in self.unifiers()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._unifiers)

    def __contains__(self, source_id: str) -> bool:
        with self._lock:
            return source_id in self._unifiers

    def stop_all(self, timeout: Optional[float] = 5.0, force: bool = False) -> bool:
        """
        Stop every unifier within one shared deadline.

        All unifiers are signalled first so they drain in parallel, then
        joined with whatever time remains. Unifiers still running at the
        deadline are force-stopped: their queued polygons are discarded and
        counted as dropped. Returns True if all stopped within the deadline.
        """
        with self._lock:
            self._closed = True
            unifiers = list(self._unifiers.values())

        for unifier in unifiers:
            unifier.request_stop(force=force)

        deadline = None if timeout is None else time.monotonic() + timeout
        all_stopped = True
        for unifier in unifiers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not unifier.join(remaining):
                all_stopped = False
                logger.warning(
                    f"Unifier {unifier.source_id} still running at shutdown deadline, "
                    f"discarding {unifier.queued} queued polygons"
                )
                unifier.request_stop(force=True)

        logger.info(f"Stopped {len(unifiers)} unifiers (force={force}, clean={all_stopped})")
        return all_stopped
