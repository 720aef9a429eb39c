"""Scan sessions: one scanner, one attempt in flight at a time.

States::

    idle -> scanning -> decoding -> resolving -> success -> idle
                                              +-> <error> -> (retry) -> scanning

A new submission supersedes the previous one: its in-flight resolve is
cancelled and its result is never acted upon. Closing the session cancels any
in-flight resolve and releases the scan device.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from .barcode_resolver import SCREEN_BY_KIND, EntityResolver, NavigationTarget, ScanOutcome
from .barcodes import decode
from .errors import (
    CrossTenantAccess,
    InvalidTransition,
    MalformedCode,
    NotFound,
    ScanError,
    TransientError,
    UnknownKind,
)

logger = logging.getLogger(__name__)


class ScanState(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DECODING = "decoding"
    RESOLVING = "resolving"
    SUCCESS = "success"
    MALFORMED_CODE = "malformed_code"
    UNKNOWN_KIND = "unknown_kind"
    NOT_FOUND = "not_found"
    CROSS_TENANT_ACCESS = "cross_tenant_access"
    TRANSIENT_ERROR = "transient_error"


ERROR_STATES = frozenset(
    {
        ScanState.MALFORMED_CODE,
        ScanState.UNKNOWN_KIND,
        ScanState.NOT_FOUND,
        ScanState.CROSS_TENANT_ACCESS,
        ScanState.TRANSIENT_ERROR,
    }
)
ACCEPTING_STATES = frozenset({ScanState.SCANNING, ScanState.DECODING, ScanState.RESOLVING})

# What clients see: a foreign record must look exactly like a missing one.
PUBLIC_STATES = {ScanState.CROSS_TENANT_ACCESS: ScanState.NOT_FOUND}

# Most specific first: CrossTenantAccess is a NotFound.
_STATE_BY_ERROR: list[tuple[type[ScanError], ScanState]] = [
    (MalformedCode, ScanState.MALFORMED_CODE),
    (UnknownKind, ScanState.UNKNOWN_KIND),
    (CrossTenantAccess, ScanState.CROSS_TENANT_ACCESS),
    (NotFound, ScanState.NOT_FOUND),
    (TransientError, ScanState.TRANSIENT_ERROR),
]


def state_for_error(error: ScanError) -> ScanState:
    for cls, state in _STATE_BY_ERROR:
        if isinstance(error, cls):
            return state
    return ScanState.TRANSIENT_ERROR


@runtime_checkable
class ScanDevice(Protocol):
    """Camera or image input owned exclusively by one active session."""

    async def acquire(self) -> None:
        ...

    async def release(self) -> None:
        ...


Navigator = Callable[[NavigationTarget], "Awaitable[None] | None"]


class ScanSession:
    def __init__(
        self,
        resolver: EntityResolver,
        tenant_id: str,
        *,
        device: ScanDevice | None = None,
        on_navigate: Navigator | None = None,
        owner_id: str | None = None,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.tenant_id = tenant_id
        self.owner_id = owner_id
        self.state = ScanState.IDLE
        self.last_outcome: ScanOutcome | None = None
        self._resolver = resolver
        self._device = device
        self._on_navigate = on_navigate
        self._device_held = False
        self._generation = 0
        self._inflight: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def device_held(self) -> bool:
        return self._device_held

    @property
    def public_state(self) -> ScanState:
        """State exposed to clients; ``state`` stays exact for logs."""
        return PUBLIC_STATES.get(self.state, self.state)

    async def __aenter__(self) -> ScanSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def start(self) -> None:
        if self._closed or self.state is not ScanState.IDLE:
            raise InvalidTransition(self._state_name(), "start")
        await self._acquire_device()
        self.state = ScanState.SCANNING

    async def retry(self) -> None:
        """User-initiated return to scanning after a failed attempt."""
        if self._closed or self.state not in ERROR_STATES:
            raise InvalidTransition(self._state_name(), "retry")
        await self._acquire_device()
        self.state = ScanState.SCANNING

    async def submit(self, raw: str) -> ScanOutcome | None:
        """Process one scanned text. Returns None when a newer scan or close() superseded it."""
        if self._closed or self.state not in ACCEPTING_STATES:
            raise InvalidTransition(self._state_name(), "submit")
        self._generation += 1
        generation = self._generation
        self._cancel_inflight()

        self.state = ScanState.DECODING
        try:
            ref = decode(raw)
        except ScanError as exc:
            return await self._finish(generation, ScanOutcome(error=exc))

        self.state = ScanState.RESOLVING
        task = asyncio.create_task(self._resolver.resolve_and_authorize(ref.kind, ref.id, self.tenant_id))
        self._inflight = task
        try:
            resolved = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.debug("Scan session %s: attempt %s superseded", self.id, generation)
                return None
            raise
        except ScanError as exc:
            outcome = ScanOutcome(error=exc)
        else:
            outcome = ScanOutcome(target=NavigationTarget(screen=SCREEN_BY_KIND[resolved.kind], reference=resolved))
        finally:
            if self._inflight is task:
                self._inflight = None
        return await self._finish(generation, outcome)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        task = self._inflight
        self._cancel_inflight()
        if task is not None:
            await asyncio.wait({task})
        await self._release_device()
        self.state = ScanState.IDLE
        logger.debug("Scan session %s closed", self.id)

    async def _finish(self, generation: int, outcome: ScanOutcome) -> ScanOutcome | None:
        if generation != self._generation or self._closed:
            return None
        self.last_outcome = outcome
        if not outcome.ok:
            self.state = state_for_error(outcome.error)
            return outcome
        self.state = ScanState.SUCCESS
        await self._release_device()
        if self._on_navigate is not None:
            result = self._on_navigate(outcome.target)
            if inspect.isawaitable(result):
                await result
        if self.state is ScanState.SUCCESS:
            self.state = ScanState.IDLE
        return outcome

    def _cancel_inflight(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None

    async def _acquire_device(self) -> None:
        if self._device is not None and not self._device_held:
            await self._device.acquire()
            self._device_held = True

    async def _release_device(self) -> None:
        if self._device is not None and self._device_held:
            self._device_held = False
            await self._device.release()

    def _state_name(self) -> str:
        return "closed" if self._closed else self.public_state.value


class ScanSessionRegistry:
    """Live scan sessions of this process, keyed by id.

    Sessions unused for ``idle_timeout`` seconds are closed the next time the
    registry is used. An owner keeps at most ``max_per_owner`` sessions: opening
    one more closes their least recently used session.
    """

    def __init__(
        self,
        idle_timeout: float | None = None,
        max_per_owner: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions: dict[str, ScanSession] = {}
        self._last_used: dict[str, float] = {}
        self._idle_timeout = idle_timeout
        self._max_per_owner = max_per_owner
        self._clock = clock

    async def add(self, session: ScanSession) -> ScanSession:
        await self.expire()
        if self._max_per_owner and session.owner_id is not None:
            owned = sorted(
                (sid for sid, s in self._sessions.items() if s.owner_id == session.owner_id),
                key=self._last_used.__getitem__,
            )
            while len(owned) >= self._max_per_owner:
                oldest = owned.pop(0)
                logger.info("Scan session %s of %s closed: owner limit reached", oldest, session.owner_id)
                await self.discard(oldest)
        self._sessions[session.id] = session
        self._last_used[session.id] = self._clock()
        return session

    async def get(self, session_id: str, owner_id: str | None = None) -> ScanSession | None:
        await self.expire()
        session = self._sessions.get(session_id)
        if session is None or (owner_id is not None and session.owner_id != owner_id):
            return None
        self._last_used[session_id] = self._clock()
        return session

    async def expire(self) -> int:
        """Close idle sessions; returns how many were closed."""
        if self._idle_timeout is None:
            return 0
        deadline = self._clock() - self._idle_timeout
        stale = [sid for sid, used in self._last_used.items() if used < deadline]
        for sid in stale:
            logger.info("Scan session %s closed after %ss idle", sid, self._idle_timeout)
            await self.discard(sid)
        return len(stale)

    async def discard(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        self._last_used.pop(session_id, None)
        if session is not None:
            await session.close()

    async def close_all(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        self._last_used.clear()
        for session in sessions:
            await session.close()

    def __len__(self) -> int:
        return len(self._sessions)
