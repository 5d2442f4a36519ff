"""In-process keyed locks with bounded waits.

Sub-order and variant mutations each take a lock keyed by the record they
change (``sub_order:<id>``, ``variant:<id>``). A lock that cannot be
acquired within the timeout raises :class:`Contention`, which callers may
retry. Entries are reference counted and dropped once nobody holds or waits
on them.

Command handlers take their locks through a :class:`LockScope`, which sorts
keys before acquiring them and releases everything when the handler body
returns. Protean's unit of work commits after that, so a writer that slips
in between release and commit is caught by the aggregate version check and
the handler is re-run by protean's version retry.
"""

import threading
from dataclasses import dataclass, field

import structlog
from protean.utils.globals import current_domain

from settlement.exceptions import Contention

logger = structlog.get_logger(__name__)


def sub_order_key(sub_order_id) -> str:
    return f"sub_order:{sub_order_id}"


def variant_key(variant_id) -> str:
    return f"variant:{variant_id}"


def message_key(key) -> str:
    return f"message:{key}"


RULES_KEY = "commission_rules"


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class LockManager:
    def __init__(self, timeout: float | None = None):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def _default_timeout(self) -> float:
        if self.timeout is not None:
            return self.timeout
        return float(current_domain.lock_timeout_seconds)

    def acquire(self, key: str, timeout: float | None = None) -> None:
        timeout = self._default_timeout() if timeout is None else timeout

        with self._guard:
            entry = self._entries.setdefault(key, _Entry())
            entry.users += 1

        if not entry.lock.acquire(timeout=timeout):
            self._forget(key, entry)
            logger.warning("Lock acquisition timed out", key=key, timeout=timeout)
            raise Contention(f"Timed out waiting for lock {key}", key=key, timeout=timeout)

    def release(self, key: str) -> None:
        with self._guard:
            entry = self._entries[key]
            entry.lock.release()
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    def _forget(self, key, entry):
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    def is_locked(self, key: str) -> bool:
        with self._guard:
            entry = self._entries.get(key)
            return entry is not None and entry.lock.locked()

    def scope(self) -> "LockScope":
        return LockScope(self)


class LockScope:
    """The set of locks one command handler holds.

    ``lock`` may be called more than once; keys already held are skipped, so
    a handler can take the sub-order lock first and the variant locks once it
    knows which variants are involved.
    """

    def __init__(self, manager: LockManager):
        self.manager = manager
        self.held: list[str] = []

    def lock(self, *keys: str) -> None:
        for key in sorted(set(keys)):
            if key in self.held:
                continue
            self.manager.acquire(key)
            self.held.append(key)

    def release_all(self) -> None:
        while self.held:
            self.manager.release(self.held.pop())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release_all()
        return False


locks = LockManager()
