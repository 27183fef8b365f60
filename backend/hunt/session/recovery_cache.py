import threading
import time

from hunt.session.models import PlayerSnapshot, SessionRecoveryRecord

DEFAULT_RECOVERY_TTL_SECONDS = 30.0


class SessionRecoveryCache:
    """In-memory store of disconnected players' progress.

    Map a player's prior connection id to a snapshot of their room progress,
    enabling a fresh connection to resume the same seat in the same room.
    Records expire after a fixed TTL; an expired record is never returned,
    even before cleanup() sweeps it. take() removes the record it returns,
    so each record can be consumed at most once.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_RECOVERY_TTL_SECONDS) -> None:
        self._ttl_seconds = ttl_seconds
        self._records: dict[str, SessionRecoveryRecord] = {}  # prior connection id -> record
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def put(
        self,
        prior_id: str,
        room_id: str,
        snapshot: PlayerSnapshot,
        *,
        game_number: int = 0,
        round_number: int = 0,
    ) -> SessionRecoveryRecord:
        """Store a snapshot for a disconnected connection, replacing any earlier one."""
        record = SessionRecoveryRecord(
            prior_id=prior_id,
            room_id=room_id,
            snapshot=snapshot,
            expires_at=time.monotonic() + self._ttl_seconds,
            game_number=game_number,
            round_number=round_number,
        )
        with self._lock:
            self._records[prior_id] = record
        return record

    def take(self, prior_id: str) -> SessionRecoveryRecord | None:
        """Atomically retrieve and remove a live record. Returns None if absent or expired."""
        with self._lock:
            record = self._records.pop(prior_id, None)
        if record is None or record.expires_at <= time.monotonic():
            return None
        return record

    def discard(self, prior_id: str) -> None:
        with self._lock:
            self._records.pop(prior_id, None)

    def cleanup(self) -> int:
        """Remove all expired records. Returns the number removed."""
        now = time.monotonic()
        with self._lock:
            expired = [prior_id for prior_id, record in self._records.items() if record.expires_at <= now]
            for prior_id in expired:
                del self._records[prior_id]
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)
