from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional

from ppclient.errors import (
    ComputationError,
    CooldownError,
    DuplicatePollError,
    PPClientError,
    TransportError,
    ValidationError,
)
from ppclient.gateway import HttpGateway
from ppclient.models import JobStatus, PollState, StatusReply
from ppclient.sink import INFO, UiSink
from ppclient.utils.logging import get_logger

POLL_INTERVAL_MS = 2000


class TimerScheduler:
    """Runs callbacks on daemon `threading.Timer`s; the handle's cancel() stops a pending one."""

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> threading.Timer:
        t = threading.Timer(delay_s, fn)
        t.daemon = True
        t.start()
        return t


def normalize_user(user: str) -> str:
    # the server lower-cases names too, so "Foo" and "foo" are one profile
    return (user or "").strip().lower()


class PollSession:
    """Bookkeeping for one `start()`: its timer chain and how it ended."""

    def __init__(self, user: str) -> None:
        self.user = user
        self.key = normalize_user(user)
        self.polls = 0
        self.success = False
        self.redirect_url: Optional[str] = None
        self.error: Optional[PPClientError] = None
        self._closed = False
        self._handle = None
        self._done = threading.Event()
        # sink events of one session never interleave
        self._emit_lock = threading.RLock()

    @property
    def finished(self) -> bool:
        return self._closed

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the terminal event has been delivered."""
        return self._done.wait(timeout)


class RecalcPoller:
    """Requests a profile recalculation and follows it until the server says done or error.

    Each user gets at most one live session. Ticks run one after another on
    the scheduler with a constant delay between them, and every session ends
    with exactly one terminal event on the sink.
    """

    def __init__(
        self,
        gateway: HttpGateway,
        sink: UiSink,
        interval_ms: int = POLL_INTERVAL_MS,
        max_polls: Optional[int] = None,
        scheduler=None,
    ) -> None:
        self.gateway = gateway
        self.sink = sink
        self.interval_s = interval_ms / 1000.0
        self.max_polls = max_polls if max_polls and max_polls > 0 else None
        self.scheduler = scheduler or TimerScheduler()
        self.logger = get_logger("poller")
        self._sessions: Dict[str, PollSession] = {}
        self._lock = threading.Lock()

    def active(self, user: str) -> bool:
        with self._lock:
            return normalize_user(user) in self._sessions

    def start(self, user: str, force: bool = False, supersede: bool = False) -> PollSession:
        session = PollSession((user or "").strip())
        if not session.key:
            raise ValidationError("user", "user field is empty")
        replaced: Optional[PollSession] = None
        with self._lock:
            existing = self._sessions.get(session.key)
            if existing is not None:
                if not supersede:
                    raise DuplicatePollError(session.user)
                replaced = existing
            self._sessions[session.key] = session
        if replaced is not None:
            self.logger.info("Superseding running recalculation for %s", session.user)
            self._finish(replaced, error=PPClientError("Superseded by a newer recalculation request."))

        self.logger.info("PP request for %s (force=%s)", session.user, force)
        try:
            reply = StatusReply.from_payload(self.gateway.request_recalc(session.user, force))
        except TransportError as e:
            self._finish(session, error=_transport_failure(e))
            return session
        except Exception as e:
            self.logger.exception("PP request for %s crashed", session.user)
            self._finish(session, error=PPClientError(f"Unexpected error while requesting recalculation: {e}"))
            return session

        if reply.status == JobStatus.DONE:
            self._finish(session, redirect_url=self.gateway.profile_url(session.user))
        elif reply.status == JobStatus.CANT_FORCE:
            self._finish(session, error=CooldownError(reply.remaining))
        else:
            self.logger.info("Request for %s accepted (%s), polling...", session.user, reply.status_name)
            self._schedule(session, 0.0, PollState(user=session.user))
        return session

    def cancel(self, user: str) -> bool:
        with self._lock:
            session = self._sessions.get(normalize_user(user))
        if session is None:
            return False
        return self._finish(session, error=PPClientError("Recalculation tracking cancelled."))

    def cancel_all(self) -> None:
        with self._lock:
            sessions: List[PollSession] = list(self._sessions.values())
        for session in sessions:
            self._finish(session, error=PPClientError("Recalculation tracking cancelled."))

    def _schedule(self, session: PollSession, delay_s: float, state: PollState) -> None:
        if session.finished:
            return
        polls_before = session.polls
        # outside the lock: a scheduler may run zero-delay callbacks inline
        handle = self.scheduler.call_later(delay_s, lambda: self._run_tick(session, state))
        with self._lock:
            if session.finished:
                handle.cancel()
                return
            if session.polls == polls_before:
                # not already run inline, which would have stored a newer handle
                session._handle = handle

    def _run_tick(self, session: PollSession, state: PollState) -> None:
        try:
            self._tick(session, state)
        except Exception as e:
            self.logger.exception("Poll tick for %s crashed", session.user)
            self._finish(session, error=PPClientError(f"Unexpected error while checking status: {e}"))

    def _tick(self, session: PollSession, state: PollState) -> None:
        if session.finished:
            return
        session.polls += 1
        try:
            reply = StatusReply.from_payload(self.gateway.check_status(session.user))
        except TransportError as e:
            self._finish(session, error=_transport_failure(e))
            return
        if session.finished:
            # cancelled while the request was in flight
            return

        notify = state.should_notify(reply)
        if notify:
            self.logger.info("%s: %s (pos=%s)", session.user, reply.status_name, reply.pos)
        next_state = state.advance(reply)

        if reply.status == JobStatus.DONE:
            self._finish(session, redirect_url=self.gateway.profile_url(session.user))
            return
        if reply.status == JobStatus.ERROR:
            self._finish(session, error=ComputationError())
            return
        if notify:
            with session._emit_lock:
                # a cancel() may have landed since the fetch returned
                if session.finished:
                    return
                self._notify(reply)
        if self.max_polls is not None and session.polls >= self.max_polls:
            self._finish(session, error=PPClientError(f"Timed out after {session.polls} status checks."))
            return
        self._schedule(session, self.interval_s, next_state)

    def _notify(self, reply: StatusReply) -> None:
        if reply.status == JobStatus.PENDING:
            if reply.pos is None:
                self.sink.on_notify(INFO, "In queue...", False)
            else:
                self.sink.on_notify(INFO, f"In queue (position {reply.pos})...", False)
        elif reply.status == JobStatus.CALCULATING:
            self.sink.on_notify(INFO, "Calculating new PP...", True)
        else:
            # TODO: drop this once the server documents its full status list
            self.sink.on_notify(INFO, f"Waiting for the server (status: {reply.status_name})...", False)

    def _finish(
        self,
        session: PollSession,
        redirect_url: Optional[str] = None,
        error: Optional[PPClientError] = None,
    ) -> bool:
        """Deliver the one terminal event of a session. Later calls are no-ops."""
        with self._lock:
            if session.finished:
                return False
            session._closed = True
            if session._handle is not None:
                session._handle.cancel()
            if self._sessions.get(session.key) is session:
                del self._sessions[session.key]
        try:
            with session._emit_lock:
                if error is None:
                    session.success = True
                    session.redirect_url = redirect_url
                    self.logger.info("Recalculation for %s done", session.user)
                    self.sink.on_terminal_success(redirect_url or "")
                else:
                    session.error = error
                    self.logger.debug("Recalculation for %s ended: %s", session.user, error)
                    self.sink.on_terminal_failure(str(error))
        finally:
            session._done.set()
        return True


def _transport_failure(e: TransportError) -> TransportError:
    return TransportError(f"Could not reach the PP server: {e}")
