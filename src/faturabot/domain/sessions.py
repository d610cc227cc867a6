"""Per-identity conversation sessions.

The engine depends on the SessionRepository protocol; the in-memory
implementation is process-local. A multi-instance deployment needs a
shared store implementing the same protocol.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Iterator, Protocol

from faturabot.domain.accounts import Account, Contact
from faturabot.infra.time import utc_now

DEFAULT_TIMEOUT_MINUTES = 30
DEFAULT_SWEEP_INTERVAL_MINUTES = 1


class Stage(str, Enum):
    INITIAL = "initial"
    AWAITING_IDENTIFIER = "awaiting_identifier"
    AWAITING_NEW_IDENTIFIER = "awaiting_new_identifier"
    MENU = "menu"
    BLOCKED = "blocked"
    NO_PERMISSION = "no_permission"


@dataclass
class Session:
    """Mutable conversation state for one identity.

    Attributes:
        stage: Current dialogue stage.
        last_interaction: Time of the last processed message. A session
            without it is treated as non-existent.
        accounts: Accounts linked to the identity for this conversation.
        contact: Billing-authorized contact that identified the caller.
        pending_identifier: CNPJ typed by the caller, kept between turns.
        initial_text: First message of the conversation, re-checked for a
            document keyword once identification succeeds.
    """

    stage: Stage = Stage.INITIAL
    last_interaction: datetime | None = None
    accounts: list[Account] = field(default_factory=list)
    contact: Contact | None = None
    pending_identifier: str | None = None
    initial_text: str | None = None

    def primary_account(self) -> Account | None:
        return self.accounts[0] if self.accounts else None

    def copy(self) -> Session:
        return replace(self, accounts=list(self.accounts))


class SessionRepository(Protocol):
    """Storage contract for sessions."""

    def get(self, identity: str) -> Session | None: ...

    def put(self, identity: str, session: Session) -> None: ...

    def delete(self, identity: str) -> None: ...

    def is_expired(self, identity: str) -> bool: ...

    def lock(self, identity: str): ...


@dataclass
class _IdentityLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class InMemorySessionRepository:
    """Thread-safe, process-local session store with inactivity timeout.

    Stale sessions are evicted by a sweep that runs from put() and lock()
    at most once per sweep interval. Identities with a turn in progress are
    never evicted, so that turn still sees the expiry.
    Per-identity locks live only while a turn holds them or the identity
    has a stored session.

    Args:
        timeout_minutes: Inactivity window (default 30 minutes).
        clock: Returns the current time (injectable for tests).
        sweep_interval_minutes: Minimum time between two sweeps.
    """

    def __init__(
        self,
        timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES,
        clock: Callable[[], datetime] = utc_now,
        sweep_interval_minutes: int = DEFAULT_SWEEP_INTERVAL_MINUTES,
    ) -> None:
        self._timeout = timedelta(minutes=timeout_minutes)
        self._clock = clock
        self._sweep_interval = timedelta(minutes=sweep_interval_minutes)
        self._next_sweep: datetime | None = None
        self._sessions: dict[str, Session] = {}
        self._guard = threading.Lock()
        # identity -> (lock, number of turns holding or waiting for it)
        self._identity_locks: dict[str, _IdentityLock] = {}

    @property
    def timeout(self) -> timedelta:
        return self._timeout

    def get(self, identity: str) -> Session | None:
        with self._guard:
            session = self._sessions.get(identity)
            return session.copy() if session else None

    def put(self, identity: str, session: Session) -> None:
        with self._guard:
            self._sessions[identity] = session.copy()
            self._maybe_sweep(keep=identity)

    def delete(self, identity: str) -> None:
        with self._guard:
            self._sessions.pop(identity, None)
            self._release_idle_lock(identity)

    def _is_stale(self, session: Session, now: datetime) -> bool:
        if session.last_interaction is None:
            return True
        return now - session.last_interaction > self._timeout

    def is_expired(self, identity: str) -> bool:
        """True when a stored session is stale or has no timestamp.

        An identity without a stored session is not "expired": there is
        nothing to discard.
        """
        with self._guard:
            session = self._sessions.get(identity)
        if session is None:
            return False
        return self._is_stale(session, self._clock())

    def sweep(self, keep: str | None = None) -> int:
        """Evict stale sessions (except `keep`) and their idle locks.

        Returns:
            Number of sessions evicted.
        """
        with self._guard:
            return self._sweep(self._clock(), keep)

    def _maybe_sweep(self, keep: str) -> None:
        # Caller holds self._guard
        now = self._clock()
        if self._next_sweep is not None and now < self._next_sweep:
            return
        self._sweep(now, keep)

    def _sweep(self, now: datetime, keep: str | None) -> int:
        # Caller holds self._guard
        self._next_sweep = now + self._sweep_interval
        stale = [
            identity
            for identity, session in self._sessions.items()
            if identity != keep
            and not self._in_progress(identity)
            and self._is_stale(session, now)
        ]
        for identity in stale:
            del self._sessions[identity]
            self._release_idle_lock(identity)
        return len(stale)

    def _in_progress(self, identity: str) -> bool:
        # Caller holds self._guard
        entry = self._identity_locks.get(identity)
        return entry is not None and entry.users > 0

    def _release_idle_lock(self, identity: str) -> None:
        # Caller holds self._guard
        entry = self._identity_locks.get(identity)
        if entry is not None and entry.users == 0 and identity not in self._sessions:
            del self._identity_locks[identity]

    @contextmanager
    def lock(self, identity: str) -> Iterator[None]:
        """Serialize processing for one identity."""
        with self._guard:
            entry = self._identity_locks.get(identity)
            if entry is None:
                entry = self._identity_locks[identity] = _IdentityLock()
            entry.users += 1
            self._maybe_sweep(keep=identity)
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                self._release_idle_lock(identity)

    def lock_count(self) -> int:
        with self._guard:
            return len(self._identity_locks)

    def __len__(self) -> int:
        with self._guard:
            return len(self._sessions)
