"""In-memory credential store.

:class:`CredentialStore` is the single source of truth for "is this user
logged in".  It holds at most one :class:`~kgrelay.core.models.CredentialRecord`
per user; a re-save replaces the record wholesale.

Every mutation invalidates the shared response cache through the injected
:class:`~kgrelay.storage.cache.CacheCoordinator` before returning, so a
``/api/getLogins`` read issued right after a write never sees a stale cached
list.

The store is guarded by one :class:`threading.Lock`.  No method awaits while
holding it.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from kgrelay.core import events
from kgrelay.core.exceptions import CredentialNotFoundError, InvalidInputError
from kgrelay.core.models import CredentialRecord
from kgrelay.storage.cache import CacheCoordinator

__all__ = ["CredentialStore"]

logger = logging.getLogger(__name__)


class CredentialStore:
    """Thread-safe mapping of user ID → :class:`CredentialRecord`.

    Args:
        coordinator: Cache coordinator notified on every mutation.  ``None``
            disables invalidation (useful in isolated unit tests).
    """

    def __init__(self, coordinator: CacheCoordinator | None = None) -> None:
        self._coordinator = coordinator
        self._lock = threading.Lock()
        self._records: dict[str, CredentialRecord] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._records

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def save(self, user_id: str | None, token: str | None) -> CredentialRecord:
        """Insert or overwrite the credential for *user_id*.

        Raises:
            InvalidInputError: If either field is empty or missing.  The store
                is left untouched.
        """
        user_id = (user_id or "").strip()
        token = (token or "").strip()
        if not user_id or not token:
            raise InvalidInputError("缺少userid或token")

        record = CredentialRecord(user_id=user_id, token=token)
        with self._lock:
            self._records[user_id] = record
        logger.info("Saved credential for user %r", user_id, extra={"event": events.LOGIN_SAVED})
        self._invalidate()
        return record

    def delete(self, user_id: str) -> None:
        """Remove the credential for *user_id*; a missing user is not an error."""
        with self._lock:
            existed = self._records.pop(user_id, None) is not None
        logger.info(
            "Deleted credential for user %r (existed=%s)",
            user_id,
            existed,
            extra={"event": events.LOGIN_DELETED},
        )
        self._invalidate()

    def clear_all(self) -> None:
        with self._lock:
            count = len(self._records)
            self._records.clear()
        logger.info("Cleared %d stored credential(s)", count, extra={"event": events.LOGINS_CLEARED})
        self._invalidate()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, user_id: str) -> CredentialRecord:
        """Return the record for *user_id*.

        Raises:
            CredentialNotFoundError: If no credential is stored.
        """
        with self._lock:
            record = self._records.get(user_id)
        if record is None:
            raise CredentialNotFoundError(user_id)
        return record

    def list(self) -> list[dict[str, Any]]:  # noqa: A003
        """Snapshot of every record projected onto ``userId/token/savedAt``."""
        with self._lock:
            records = list(self._records.values())
        return [record.to_public() for record in records]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _invalidate(self) -> None:
        if self._coordinator is not None:
            self._coordinator.invalidate()
