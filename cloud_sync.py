"""Best-effort upload of learning progress snapshots."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

LOGGER = logging.getLogger(__name__)


class ProgressSync:
    """Posts progress snapshots to an HTTP endpoint without ever blocking local use.

    A failed upload is kept and retried by :meth:`flush` on the next foreground.
    Only the newest snapshot is kept, since each one supersedes the last.
    """

    def __init__(self, endpoint: Optional[str], timeout: float = 10, session: Optional[requests.Session] = None) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._session = session or requests.Session()
        self._pending: Optional[Dict[str, Any]] = None

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint)

    @property
    def pending(self) -> Optional[Dict[str, Any]]:
        return self._pending

    def push(self, snapshot: Dict[str, Any]) -> bool:
        if not self.enabled:
            return False
        try:
            response = self._session.post(self.endpoint, json=snapshot, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException:
            LOGGER.warning("Progress sync to %s failed; will retry on next foreground", self.endpoint, exc_info=True)
            self._pending = snapshot
            return False
        LOGGER.debug("Progress snapshot synced (%d keys)", len(snapshot))
        self._pending = None
        return True

    def flush(self) -> bool:
        """Retry the queued snapshot, if any."""
        if self._pending is None:
            return True
        LOGGER.info("Retrying queued progress sync")
        return self.push(self._pending)
