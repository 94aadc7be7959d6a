import asyncio
import contextlib
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Coroutine, Dict, List, Optional, Set

from cryptography.hazmat.primitives.asymmetric import rsa

from jwks_server.core import security
from jwks_server.core.config import Settings
from jwks_server.core.exceptions import KeyIdCollisionError, NoActiveKeyError

logger = logging.getLogger(__name__)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

@dataclass(eq=False)
class KeyRecord:
    """
    One RSA key pair plus its public metadata.
    The private key never leaves the manager and is never serialized.
    """
    kid: str
    private_key: rsa.RSAPrivateKey = field(repr=False)
    public_jwk: Dict[str, Any] = field(repr=False)
    expires_at: datetime

    def is_expired(self, at: Optional[datetime] = None) -> bool:
        return self.expires_at <= (at or utcnow())

class KeyManager:
    """
    Owns the active and expired key stores and rotates keys between them.

    Both stores are guarded by a single lock. Key generation happens outside
    the lock, the lock is only taken to inspect or mutate the dicts.
    """

    def __init__(
        self,
        active_ttl_seconds: int = 15 * 60,
        expired_offset_seconds: int = -5 * 60,
        sweep_interval_ms: int = 2000,
        key_size: int = 2048,
    ):
        self.active: Dict[str, KeyRecord] = {}
        self.expired: Dict[str, KeyRecord] = {}
        self.active_ttl_seconds = active_ttl_seconds
        self.expired_offset_seconds = expired_offset_seconds
        self.sweep_interval_ms = sweep_interval_ms
        self.key_size = key_size

        self._lock = threading.Lock()
        self._sweep_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyManager":
        return cls(
            active_ttl_seconds=settings.ACTIVE_KEY_TTL_SECONDS,
            expired_offset_seconds=settings.EXPIRED_KEY_OFFSET_SECONDS,
            sweep_interval_ms=settings.KEY_SWEEP_INTERVAL_MS,
            key_size=settings.RSA_KEY_SIZE,
        )

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    # --- Lifecycle ---

    async def start(self) -> None:
        """
        Guarantees at least one active and one expired key, then begins
        periodic sweeping. Key generation errors propagate to the caller.
        """
        await self.ensure_active()
        await self.ensure_expired()

        if self.running:
            return
        self._sweep_task = asyncio.create_task(self._run_sweeps(), name="jwks-key-sweep")

    async def stop(self) -> None:
        """
        Cancels future sweeps. Replenishment already in flight may finish,
        and reads keep creating keys on demand.
        """
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run_sweeps(self) -> None:
        interval = self.sweep_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Key sweep failed")

    # --- Creation ---

    async def create_key(self, lifetime_seconds: int) -> KeyRecord:
        """
        Generates a fresh RSA key pair expiring `lifetime_seconds` from now.
        A negative lifetime yields a record that is already expired.
        Does not touch either store.
        """
        public_key, private_key = await asyncio.to_thread(
            security.generate_rsa_keypair, self.key_size
        )
        kid = str(uuid.uuid4())

        public_jwk = security.public_key_to_jwk(public_key)
        public_jwk["use"] = "sig"
        public_jwk["alg"] = security.ALGORITHM
        public_jwk["kid"] = kid

        expires_at = utcnow() + timedelta(seconds=lifetime_seconds)
        return KeyRecord(kid=kid, private_key=private_key, public_jwk=public_jwk, expires_at=expires_at)

    def _insert(self, store: Dict[str, KeyRecord], record: KeyRecord) -> None:
        with self._lock:
            if record.kid in self.active or record.kid in self.expired:
                raise KeyIdCollisionError(f"Key id {record.kid} is already in use")
            store[record.kid] = record

    async def ensure_active(self) -> Optional[KeyRecord]:
        """Creates an active key if there is no unexpired one. Returns the new record, if any."""
        if self.active_keys():
            return None

        record = await self.create_key(self.active_ttl_seconds)
        self._insert(self.active, record)
        logger.info(
            "Created active signing key",
            extra={"kid": record.kid, "expires_at": record.expires_at.isoformat()}
        )
        return record

    async def ensure_expired(self) -> Optional[KeyRecord]:
        """Creates a key straight into the expired store if that store is empty."""
        with self._lock:
            if self.expired:
                return None

        record = await self.create_key(self.expired_offset_seconds)
        self._insert(self.expired, record)
        logger.info(
            "Created expired signing key",
            extra={"kid": record.kid, "expires_at": record.expires_at.isoformat()}
        )
        return record

    # --- Rotation ---

    def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """
        Moves every expired active record into the expired store, keeping its kid.
        If nothing usable is left, a replacement is generated in the background
        and is not awaited here. Must be called from the event loop.
        """
        now = now or utcnow()
        with self._lock:
            moved = [kid for kid, record in self.active.items() if record.is_expired(now)]
            for kid in moved:
                self.expired[kid] = self.active.pop(kid)
            empty = not self.active

        if moved:
            logger.info("Rotated expired signing keys", extra={"kids": moved})

        # Only one sweep-triggered replacement at a time.
        if empty and not self._background:
            self._spawn(self.ensure_active())
        return moved

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background key generation failed", exc_info=task.exception())

    # --- Accessors ---

    def active_keys(self, now: Optional[datetime] = None) -> List[KeyRecord]:
        """Active records still valid at `now`, regardless of when the last sweep ran."""
        now = now or utcnow()
        with self._lock:
            return [record for record in self.active.values() if not record.is_expired(now)]

    def active_jwks(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {"keys": [dict(record.public_jwk) for record in self.active_keys(now)]}

    def expired_kids(self) -> Set[str]:
        with self._lock:
            return set(self.expired)

    def get_expired(self, kid: str) -> Optional[KeyRecord]:
        with self._lock:
            return self.expired.get(kid)

    async def signing_key(self) -> KeyRecord:
        """
        Returns an unexpired active record, creating one if needed.
        Which record is chosen when several qualify is unspecified.
        """
        actives = self.active_keys()
        if not actives:
            await self.ensure_active()
            actives = self.active_keys()
        if not actives:
            raise NoActiveKeyError("No unexpired active key available")
        return actives[0]

    async def expired_signing_key(self) -> KeyRecord:
        with self._lock:
            records = list(self.expired.values())
        if not records:
            await self.ensure_expired()
            with self._lock:
                records = list(self.expired.values())
        return records[0]
