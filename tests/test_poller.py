import threading

import pytest

from ppclient.errors import ComputationError, CooldownError, DuplicatePollError, TransportError, ValidationError
from ppclient.models import PollState
from ppclient.poller import RecalcPoller, TimerScheduler
from ppclient.sink import INFO, UiSink


class Handle:
    def __init__(self, fn):
        self.fn = fn
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Queues callbacks; tests drive them with run_all()."""

    def __init__(self):
        self.queue = []
        self.delays = []

    def call_later(self, delay_s, fn):
        h = Handle(fn)
        self.queue.append(h)
        self.delays.append(delay_s)
        return h

    def run_all(self, limit=100):
        ran = 0
        while self.queue and ran < limit:
            h = self.queue.pop(0)
            if not h.cancelled:
                h.fn()
            ran += 1
        return ran


class DummyGateway:
    def __init__(self, request_reply, checks=()):
        self.request_reply = request_reply
        self.checks = list(checks)
        self.requests = []
        self.check_calls = 0

    def request_recalc(self, user, force=False):
        self.requests.append((user, force))
        if isinstance(self.request_reply, Exception):
            raise self.request_reply
        return self.request_reply

    def check_status(self, user):
        self.check_calls += 1
        reply = self.checks.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def profile_url(self, user):
        return f"http://pp.test/pp?user={user}"


class RecordingSink(UiSink):
    def __init__(self):
        self.events = []

    def on_notify(self, kind, message, persistent=False):
        self.events.append(("notify", kind, message))

    def on_terminal_success(self, redirect_url):
        self.events.append(("success", redirect_url))

    def on_terminal_failure(self, message):
        self.events.append(("failure", message))


def make(request_reply, checks=(), **kw):
    gw = DummyGateway(request_reply, checks)
    sink = RecordingSink()
    sched = ManualScheduler()
    poller = RecalcPoller(gw, sink, scheduler=sched, **kw)
    return poller, gw, sink, sched


def test_queue_sequence_notifies_three_times():
    poller, gw, sink, sched = make(
        {"status": "accepted"},
        [
            {"status": "pending", "pos": 5},
            {"status": "pending", "pos": 5},
            {"status": "pending", "pos": 3},
            {"status": "done"},
        ],
    )
    session = poller.start("Cookiezi")
    sched.run_all()
    assert sink.events == [
        ("notify", INFO, "In queue (position 5)..."),
        ("notify", INFO, "In queue (position 3)..."),
        ("success", "http://pp.test/pp?user=Cookiezi"),
    ]
    assert gw.check_calls == 4
    assert sched.queue == []
    assert session.finished and session.success
    assert session.wait(0)


def test_first_poll_is_immediate_then_fixed_interval():
    poller, gw, sink, sched = make(
        {"status": "accepted"},
        [{"status": "calculating"}, {"status": "calculating"}, {"status": "done"}],
        interval_ms=2000,
    )
    poller.start("a")
    sched.run_all()
    assert sched.delays == [0.0, 2.0, 2.0]
    assert sink.events[0] == ("notify", INFO, "Calculating new PP...")
    assert len(sink.events) == 2


def test_already_done_redirects_without_polling():
    poller, gw, sink, sched = make({"status": "done"})
    session = poller.start("whitecat")
    assert sink.events == [("success", "http://pp.test/pp?user=whitecat")]
    assert sched.queue == []
    assert session.redirect_url == "http://pp.test/pp?user=whitecat"


def test_cant_force_never_polls():
    poller, gw, sink, sched = make({"status": "cant_force", "remaining": 120})
    session = poller.start("rafis", force=True)
    sched.run_all()
    assert gw.requests == [("rafis", True)]
    assert gw.check_calls == 0
    assert sink.events == [("failure", "You can't force a recalculation yet, try again in 120 seconds.")]
    assert isinstance(session.error, CooldownError)
    assert session.error.remaining == 120


def test_error_status_is_single_terminal_failure():
    poller, gw, sink, sched = make(
        {"status": "accepted"},
        [{"status": "pending", "pos": 1}, {"status": "calculating"}, {"status": "error"}],
    )
    session = poller.start("x")
    sched.run_all()
    assert [e[0] for e in sink.events] == ["notify", "notify", "failure"]
    assert sink.events[-1] == ("failure", "Error while calculating PP.")
    assert isinstance(session.error, ComputationError)
    assert not poller.active("x")


def test_unknown_status_keeps_polling():
    poller, gw, sink, sched = make(
        {"status": "accepted"},
        [{"status": "warming_up"}, {"status": "warming_up"}, {"status": "done"}],
    )
    poller.start("x")
    sched.run_all()
    assert gw.check_calls == 3
    assert sink.events[0] == ("notify", INFO, "Waiting for the server (status: warming_up)...")
    assert sink.events[-1][0] == "success"
    assert len(sink.events) == 2


def test_transport_error_on_request_is_terminal():
    poller, gw, sink, sched = make(TransportError("connection refused"))
    session = poller.start("x")
    assert sink.events == [("failure", "Could not reach the PP server: connection refused")]
    assert isinstance(session.error, TransportError)
    assert not poller.active("x")


def test_transport_error_while_polling_is_terminal():
    poller, gw, sink, sched = make(
        {"status": "accepted"},
        [{"status": "pending", "pos": 2}, TransportError("timed out")],
    )
    poller.start("x")
    sched.run_all()
    assert sink.events[-1] == ("failure", "Could not reach the PP server: timed out")
    assert sched.queue == []


def test_duplicate_start_rejected_case_insensitively():
    poller, gw, sink, sched = make({"status": "accepted"}, [{"status": "done"}])
    poller.start("Vaxei")
    with pytest.raises(DuplicatePollError):
        poller.start(" vaxei ")
    assert len(gw.requests) == 1
    sched.run_all()
    # finished sessions free the slot
    poller.start("vaxei")
    assert len(gw.requests) == 2


def test_supersede_ends_old_session_once():
    poller, gw, sink, sched = make(
        {"status": "accepted"},
        [{"status": "pending", "pos": 1}, {"status": "done"}],
    )
    first = poller.start("x")
    second = poller.start("x", supersede=True)
    sched.run_all()
    assert first.finished and not first.success
    assert second.success
    failures = [e for e in sink.events if e[0] == "failure"]
    assert failures == [("failure", "Superseded by a newer recalculation request.")]
    # the first chain's tick was cancelled, so only the second one polled
    assert gw.check_calls == 2


def test_cancel_stops_scheduling():
    poller, gw, sink, sched = make(
        {"status": "accepted"},
        [{"status": "pending", "pos": 4}, {"status": "pending", "pos": 3}],
    )
    session = poller.start("x")
    sched.run_all(limit=1)
    assert poller.cancel("x") is True
    assert poller.cancel("x") is False
    sched.run_all()
    assert gw.check_calls == 1
    assert sink.events[-1] == ("failure", "Recalculation tracking cancelled.")
    assert session.finished


def test_max_polls_ceiling():
    poller, gw, sink, sched = make(
        {"status": "accepted"},
        [{"status": "calculating"}] * 5,
        max_polls=3,
    )
    session = poller.start("x")
    sched.run_all()
    assert gw.check_calls == 3
    assert sink.events[-1] == ("failure", "Timed out after 3 status checks.")
    assert not session.success


def test_pending_without_position():
    poller, gw, sink, sched = make({"status": "accepted"}, [{"status": "pending"}, {"status": "done"}])
    poller.start("x")
    sched.run_all()
    assert sink.events[0] == ("notify", INFO, "In queue...")


def test_timer_scheduler_runs_callback():
    fired = threading.Event()
    TimerScheduler().call_later(0.01, fired.set)
    assert fired.wait(2.0)


def test_blank_user_rejected_before_request():
    poller, gw, sink, sched = make({"status": "done"})
    with pytest.raises(ValidationError):
        poller.start("   ")
    assert gw.requests == []


def test_unexpected_request_failure_still_ends_session():
    poller, gw, sink, sched = make(RuntimeError("boom"))
    session = poller.start("x")
    assert session.finished and not session.success
    assert sink.events == [("failure", "Unexpected error while requesting recalculation: boom")]
    assert not poller.active("x")
    # the slot is free again
    gw.request_reply = {"status": "done"}
    assert poller.start("x").success


def test_cancel_after_fetch_suppresses_info_event(monkeypatch):
    poller, gw, sink, sched = make({"status": "accepted"}, [{"status": "pending", "pos": 9}])

    session = poller.start("x")

    def racing_notify(reply):
        raise AssertionError("info event delivered after the terminal event")

    class CancellingState(PollState):
        def should_notify(self, reply):
            poller.cancel("x")
            return True

    monkeypatch.setattr(poller, "_notify", racing_notify)
    sched.queue.clear()
    poller._tick(session, CancellingState(user="x"))
    assert sink.events == [("failure", "Recalculation tracking cancelled.")]
    assert sched.queue == []


class InlineScheduler:
    """Runs zero-delay callbacks immediately, like an event loop's call_soon."""

    def __init__(self):
        self.later = []

    def call_later(self, delay_s, fn):
        h = Handle(fn)
        if delay_s == 0:
            fn()
        else:
            self.later.append(h)
        return h


def test_inline_scheduler_does_not_deadlock():
    gw = DummyGateway({"status": "accepted"}, [{"status": "pending", "pos": 2}, {"status": "done"}])
    sink = RecordingSink()
    sched = InlineScheduler()
    poller = RecalcPoller(gw, sink, scheduler=sched)
    session = poller.start("x")
    assert gw.check_calls == 1
    assert sink.events == [("notify", INFO, "In queue (position 2)...")]
    # the pending handle is the one cancel() would stop
    assert session._handle is sched.later[0]
    sched.later.pop(0).fn()
    assert session.success
    assert sink.events[-1] == ("success", "http://pp.test/pp?user=x")
