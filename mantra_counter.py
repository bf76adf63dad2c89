"""
Solo Leveller - Mantra Counter
Owns the authoritative repetition count of the current mantra session.

Events from every channel (tap, voice, manual) go through record_event(),
which appends the log entry, increments, and checks completion in one
locked section with no await in between. Persistence is fire-and-forget
through a debounced flush; explicit transitions (start, end, resume) write
through the same flush so writes for a session never reorder.

States: NO_SESSION -> ACTIVE -> ENDED, with resume() going back to ACTIVE.
"""

import asyncio
import copy
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import config as cfg
from autosave import DebouncedFlush
from config import CounterConfig
from errors import (
    EmptyMantra,
    InvalidTarget,
    NoActiveSession,
    PersistenceError,
    SessionNotFound,
)
from logging_utils import log_event
from models import CountChannel, LogEntry, MantraSession, default_session_name, now_ms
from persistence_facade import PersistenceFacade


class CounterState(Enum):
    NO_SESSION = "no_session"
    ACTIVE = "active"
    ENDED = "ended"


@dataclass
class SessionParams:
    mantra_text: str
    required_repetitions: int
    name: str = ""
    date_of_birth: Optional[str] = None
    time_of_birth: Optional[str] = None
    ritual_description: str = ""


def validate_target(value) -> int:
    """Positive whole number of repetitions, custom targets capped at one million."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidTarget(f"required repetitions must be a whole number, got {value!r}")
    if value <= 0:
        raise InvalidTarget(f"required repetitions must be positive, got {value}")
    if value > cfg.CUSTOM_REPETITIONS_MAX:
        raise InvalidTarget(f"required repetitions above {cfg.CUSTOM_REPETITIONS_MAX}")
    return value


def validate_mantra(text) -> str:
    text = (text or "").strip()
    if not text:
        raise EmptyMantra("mantra text is empty")
    return text[:cfg.MANTRA_TEXT_MAX]


class CounterStateMachine:
    def __init__(
        self,
        facade: PersistenceFacade,
        config: Optional[CounterConfig] = None,
        *,
        clock: Callable[[], int] = now_ms,
        on_persistence_error: Optional[Callable[[BaseException], None]] = None,
    ):
        self.facade = facade
        self.config = config or CounterConfig()
        self.on_persistence_error = on_persistence_error
        self._clock = clock
        self._lock = threading.RLock()
        self._state = CounterState.NO_SESSION
        self._session: Optional[MantraSession] = None
        self._completion_notified = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._state_listeners: list = []
        self._completion_listeners: list = []
        self._flush = DebouncedFlush(
            self._write_session,
            delay_ms=self.config.flush_delay_ms,
            max_delay_ms=self.config.flush_max_delay_ms,
            on_error=self._report_error,
            name="mantra-session",
        )

    # -- observers ---------------------------------------------------------

    @property
    def state(self) -> CounterState:
        return self._state

    @property
    def session(self) -> Optional[MantraSession]:
        return self._session

    @property
    def count(self) -> int:
        return self._session.current_repetitions if self._session else 0

    @property
    def progress(self) -> float:
        session = self._session
        if session is None:
            return 0.0
        return min(1.0, session.current_repetitions / session.required_repetitions)

    @property
    def flush_pending(self) -> bool:
        return self._flush.pending

    def add_state_listener(self, callback: Callable[[CounterState, Optional[MantraSession]], None]) -> None:
        self._state_listeners.append(callback)

    def add_completion_listener(self, callback: Callable[[MantraSession], None]) -> None:
        self._completion_listeners.append(callback)

    def _notify_state(self) -> None:
        for callback in list(self._state_listeners):
            callback(self._state, self._session)

    def _notify_completion(self, session: MantraSession) -> None:
        log_event("INFO", "Mantra", "Session complete", id=session.id,
                  repetitions=session.current_repetitions)
        for callback in list(self._completion_listeners):
            callback(session)

    # -- persistence plumbing ----------------------------------------------

    def _report_error(self, error: BaseException) -> None:
        if self.on_persistence_error is not None:
            self.on_persistence_error(error)

    async def _write_session(self) -> None:
        with self._lock:
            if self._session is None:
                return
            snapshot = copy.deepcopy(self._session)
        await self.facade.save_mantra_session(snapshot)

    async def _persist_now(self) -> None:
        await self._flush.flush(force=True)

    def _set_pointer(self, session_id: Optional[str]) -> None:
        self.facade.set_last_active(cfg.POINTER_MANTRA, session_id)

    def _remember_loop(self) -> None:
        self._loop = asyncio.get_running_loop()

    # -- transitions -------------------------------------------------------

    async def start(self, params: SessionParams) -> MantraSession:
        """Create and activate a new session, ending any active one first."""
        target = validate_target(params.required_repetitions)
        mantra = validate_mantra(params.mantra_text)
        self._remember_loop()

        if self._state is CounterState.ACTIVE:
            await self.end()
        else:
            await self._flush.flush()

        session = MantraSession(
            name=(params.name or "").strip()[:cfg.SESSION_NAME_MAX] or default_session_name(),
            date_of_birth=params.date_of_birth or None,
            time_of_birth=params.time_of_birth or None,
            ritual_description=(params.ritual_description or "")[:cfg.RITUAL_DESCRIPTION_MAX],
            mantra_text=mantra,
            required_repetitions=target,
            current_repetitions=0,
            is_active=True,
            started_at=self._clock(),
        )
        with self._lock:
            self._session = session
            self._state = CounterState.ACTIVE
            self._completion_notified = False
        log_event("INFO", "Mantra", "Session started", id=session.id, target=target)

        await self._persist_now()
        self._set_pointer(session.id)
        self._notify_state()
        return session

    def record_event(self, channel=CountChannel.MANUAL) -> int:
        """Count one repetition. Returns the new count; raises NoActiveSession."""
        channel = CountChannel(channel)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            raise RuntimeError(
                "record_event must run on the counter's event loop; use submit_event_threadsafe"
            ) from None
        with self._lock:
            session = self._session
            if self._state is not CounterState.ACTIVE or session is None:
                raise NoActiveSession("no active mantra session")
            now = self._clock()
            session.log.append(LogEntry(timestamp=now, channel=channel))
            session.current_repetitions += 1
            completed = session.current_repetitions >= session.required_repetitions
            notify = False
            if completed:
                session.is_active = False
                if session.completed_at is None:
                    session.completed_at = now
                self._state = CounterState.ENDED
                notify = not self._completion_notified
                self._completion_notified = True
            count = session.current_repetitions

        if completed:
            self._flush.flush_soon()
            self._set_pointer(None)
            self._notify_state()
            if notify:
                self._notify_completion(session)
        else:
            self._flush.mark_dirty()
        return count

    def _record_event_from_thread(self, channel) -> None:
        try:
            self.record_event(channel)
        except NoActiveSession:
            log_event("DEBUG", "Mantra", "Dropped event outside an active session", channel=channel)

    def submit_event_threadsafe(self, channel=CountChannel.VOICE) -> bool:
        """Queue an event from another thread onto the counter's event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            log_event("WARN", "Mantra", "No event loop to deliver event", channel=channel)
            return False
        loop.call_soon_threadsafe(self._record_event_from_thread, channel)
        return True

    async def end(self, final_count: Optional[int] = None) -> MantraSession:
        """Finalise the active session; completed_at only when the target was reached."""
        with self._lock:
            session = self._session
            if self._state is not CounterState.ACTIVE or session is None:
                raise NoActiveSession("no active mantra session to end")
            if final_count is not None:
                if isinstance(final_count, bool) or not isinstance(final_count, int) or final_count < 0:
                    raise InvalidTarget(f"final count must be a non-negative whole number, got {final_count!r}")
                session.current_repetitions = min(final_count, session.required_repetitions)
            session.is_active = False
            notify = False
            if session.target_reached:
                if session.completed_at is None:
                    session.completed_at = self._clock()
                notify = not self._completion_notified
                self._completion_notified = True
            self._state = CounterState.ENDED
        log_event("INFO", "Mantra", "Session ended", id=session.id,
                  repetitions=session.current_repetitions, target=session.required_repetitions)

        await self._persist_now()
        self._set_pointer(None)
        self._notify_state()
        if notify:
            self._notify_completion(session)
        return session

    async def resume(self, session_id: str) -> MantraSession:
        """Re-activate a stored session, whatever state it was left in."""
        self._remember_loop()
        with self._lock:
            current = self._session
        if current is not None and current.id == session_id:
            session = current
        else:
            session = await self.facade.get_mantra_session(session_id)
            if session is None:
                raise SessionNotFound(session_id)

        if self._state is CounterState.ACTIVE:
            if session is current:
                return session
            await self.end()
        else:
            await self._flush.flush()

        with self._lock:
            session.is_active = True
            self._session = session
            self._state = CounterState.ACTIVE
            # completed_at is set once and kept, so it marks a session already signalled
            self._completion_notified = session.completed_at is not None
        log_event("INFO", "Mantra", "Session resumed", id=session.id,
                  repetitions=session.current_repetitions, target=session.required_repetitions)

        await self._persist_now()
        self._set_pointer(session.id)
        self._notify_state()
        return session

    async def delete(self, session_id: str) -> None:
        """Remove a stored session; deleting the current one drops back to NO_SESSION."""
        with self._lock:
            is_current = self._session is not None and self._session.id == session_id
        if is_current:
            self._flush.cancel()
            await self._flush.wait_idle()
            with self._lock:
                self._session = None
                self._state = CounterState.NO_SESSION

        try:
            await self.facade.delete_mantra_session(session_id)
        except PersistenceError as e:
            log_event("ERROR", "Mantra", "Delete failed", id=session_id, error=e)
            self._report_error(e)

        if is_current or self.facade.get_last_active(cfg.POINTER_MANTRA) == session_id:
            self._set_pointer(None)
        if is_current:
            self._notify_state()
        log_event("INFO", "Mantra", "Session deleted", id=session_id)

    async def restore(self) -> Optional[MantraSession]:
        """Start-up: resume the session named by the last-active pointer if still active."""
        self._remember_loop()
        session_id = self.facade.get_last_active(cfg.POINTER_MANTRA)
        if not session_id:
            return None
        try:
            session = await self.facade.get_mantra_session(session_id)
        except PersistenceError as e:
            log_event("ERROR", "Mantra", "Could not load last session", id=session_id, error=e)
            self._report_error(e)
            return None
        if session is None or not session.is_active:
            log_event("INFO", "Mantra", "Clearing stale last-session pointer", id=session_id)
            self._set_pointer(None)
            return None

        with self._lock:
            self._session = session
            self._state = CounterState.ACTIVE
            self._completion_notified = session.completed_at is not None
        log_event("INFO", "Mantra", "Session restored", id=session.id,
                  repetitions=session.current_repetitions)
        self._notify_state()
        return session

    def update_details(self, **changes) -> MantraSession:
        """Edit descriptive fields or the target of the current session."""
        allowed = {"name", "date_of_birth", "time_of_birth", "ritual_description",
                   "mantra_text", "required_repetitions"}
        unknown = set(changes) - allowed
        if unknown:
            raise TypeError(f"unknown session fields: {sorted(unknown)}")
        if "mantra_text" in changes:
            changes["mantra_text"] = validate_mantra(changes["mantra_text"])
        if "required_repetitions" in changes:
            changes["required_repetitions"] = validate_target(changes["required_repetitions"])
        if "name" in changes:
            changes["name"] = (changes["name"] or "").strip()[:cfg.SESSION_NAME_MAX] or default_session_name()
        if "ritual_description" in changes:
            changes["ritual_description"] = (changes["ritual_description"] or "")[:cfg.RITUAL_DESCRIPTION_MAX]

        with self._lock:
            session = self._session
            if session is None:
                raise NoActiveSession("no mantra session to edit")
            for name, value in changes.items():
                setattr(session, name, value)
            completed = (self._state is CounterState.ACTIVE and session.target_reached)
            notify = False
            if completed:
                session.is_active = False
                if session.completed_at is None:
                    session.completed_at = self._clock()
                self._state = CounterState.ENDED
                notify = not self._completion_notified
                self._completion_notified = True

        if completed:
            self._flush.flush_soon()
            self._set_pointer(None)
            self._notify_state()
            if notify:
                self._notify_completion(session)
        else:
            self._flush.mark_dirty()
        return session

    async def flush(self) -> bool:
        return await self._flush.flush()

    async def close(self) -> None:
        """Write anything pending. The session stays where it is for the next restore."""
        await self._flush.close()
