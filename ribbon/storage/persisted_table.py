"""
Persisted Table - an in-memory record table mirrored to one store key.

The whole table is serialized as a single JSON value and written on every
mutation; it is read back wholesale on first access per process. Records are
pydantic models keyed by an identity string.

Failure handling is an explicit policy:
- FAIL_OPEN: store errors are logged and swallowed, the in-memory table keeps
  serving (state just does not survive a restart). A failed read leaves the
  table empty, so the next write replaces every stored record, lockouts
  included.
- FAIL_CLOSED: store errors raise StorageUnavailableError. A failed load is
  retried on the next access; a failed write keeps the in-memory mutation.
"""
import asyncio
import logging
from typing import Callable, Dict, Generic, Optional, Type, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from ..config import PersistenceFailurePolicy
from ..errors import StorageUnavailableError
from ..observability.metrics import QuotaMetrics
from .kv_store import KeyValueStore

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class PersistedTable(Generic[RecordT]):
    """
    Dict of records loaded once from, and written whole to, a key/value store.

    Example:
        >>> table = PersistedTable(store, "@ribbon/generation_limits", GenerationRecord)
        >>> records = await table.ensure_loaded()
        >>> records["user-1"] = GenerationRecord(user_id="user-1", window_start=now)
        >>> await table.persist()
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        record_type: Type[RecordT],
        failure_policy: PersistenceFailurePolicy = PersistenceFailurePolicy.FAIL_OPEN,
        on_load: Optional[Callable[[Dict[str, RecordT]], int]] = None,
        metrics: Optional[QuotaMetrics] = None,
    ):
        """
        Args:
            store: Backing key/value store
            key: Store key holding the serialized table
            record_type: Pydantic model of one record
            failure_policy: Behavior on store read/write failure
            on_load: Called with the freshly loaded table (expiry sweep);
                returns the number of records it removed
            metrics: Optional instruments for storage error counts
        """
        self.key = key
        self.records: Dict[str, RecordT] = {}
        self._store = store
        self._adapter = TypeAdapter(Dict[str, record_type])
        self._failure_policy = failure_policy
        self._on_load = on_load
        self._metrics = metrics
        self._loaded = False
        self._load_lock: Optional[asyncio.Lock] = None
        self._write_lock: Optional[asyncio.Lock] = None

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def ensure_loaded(self) -> Dict[str, RecordT]:
        """Load the table from the store once per instance lifetime."""
        if self._loaded:
            return self.records

        if self._load_lock is None:
            self._load_lock = asyncio.Lock()

        async with self._load_lock:
            # Another task may have finished the load while we waited
            if self._loaded:
                return self.records

            try:
                raw = await self._store.get(self.key)
            except Exception as e:
                self._handle_store_error("get", e)
                raw = None

            self.records = self._decode(raw)
            if self._on_load is not None:
                removed = self._on_load(self.records)
                if removed:
                    logger.debug(f"Swept {removed} expired records from {self.key}")
            self._loaded = True

        return self.records

    async def persist(self) -> None:
        """Write the whole table to the store, latest state wins."""
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()

        async with self._write_lock:
            # Serialize inside the lock so a queued writer always sends current state
            payload = self._adapter.dump_json(self.records).decode("utf-8")
            try:
                await self._store.set(self.key, payload)
            except Exception as e:
                self._handle_store_error("set", e)

    async def clear(self, record_key: Optional[str] = None) -> None:
        """Remove one record, or every record when record_key is None."""
        await self.ensure_loaded()
        if record_key is None:
            self.records.clear()
        else:
            self.records.pop(record_key, None)
        await self.persist()

    def _decode(self, raw: Optional[str]) -> Dict[str, RecordT]:
        if not raw:
            return {}
        try:
            return self._adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning(
                f"Discarding malformed data under {self.key}: {e.error_count()} errors"
            )
            return {}

    def _handle_store_error(self, operation: str, error: Exception) -> None:
        if self._metrics is not None:
            self._metrics.storage_errors_total.add(
                1, {"operation": operation, "key": self.key}
            )

        if self._failure_policy is PersistenceFailurePolicy.FAIL_CLOSED:
            logger.error(f"Storage {operation} failed for {self.key}: {error}")
            raise StorageUnavailableError(operation, self.key) from error

        logger.warning(
            f"Storage {operation} failed for {self.key}, continuing in memory: {error}",
            exc_info=True,
        )
