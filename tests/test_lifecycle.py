import time

import pytest

from collabpad_server.lifecycle import SessionManager, SessionNotFound


def test_join_unknown_session_raises(manager):
    with pytest.raises(SessionNotFound):
        manager.join("no-such-session", "C-1")


def test_join_returns_bootstrap_snapshot(manager):
    session = manager.create_session("Notes", "hello")
    result = manager.join(session.id, "C-1")
    assert (result.title, result.content, result.active_users) == ("Notes", "hello", 1)
    assert result.added is True
    assert result.others == ()


def test_repeated_join_never_duplicates_participant(manager):
    session = manager.create_session("Notes", "hello")
    manager.join(session.id, "C-1")
    again = manager.join(session.id, "C-1")
    assert again.added is False
    assert again.active_users == 1
    assert manager.snapshot(session.id)["activeUsers"] == 1


def test_leave_is_idempotent(manager):
    session = manager.create_session()
    manager.join(session.id, "C-1")
    manager.join(session.id, "C-2")
    first = manager.leave(session.id, "C-1")
    assert first is not None
    assert first.remaining == ("C-2",)
    assert manager.leave(session.id, "C-1") is None
    assert manager.leave(session.id, "C-never") is None
    assert manager.leave("unknown", "C-1") is None


def test_create_arms_expiry_for_unjoined_session(manager, timers):
    session = manager.create_session()
    assert len(timers.pending) == 1
    timers.fire_pending()
    with pytest.raises(SessionNotFound):
        manager.snapshot(session.id)


def test_join_cancels_expiry(manager, timers):
    session = manager.create_session()
    manager.join(session.id, "C-1")
    assert timers.pending == []
    assert all(t.cancelled for t in timers.timers)


def test_last_leave_arms_expiry_and_expiry_deletes(manager, timers):
    session = manager.create_session()
    manager.join(session.id, "C-1")
    manager.leave(session.id, "C-1")
    assert len(timers.pending) == 1
    assert timers.pending[0].interval == manager.session_ttl
    timers.fire_pending()
    assert manager.store.get(session.id) is None
    with pytest.raises(SessionNotFound):
        manager.join(session.id, "C-1")


def test_rejoin_before_expiry_keeps_session(manager, timers):
    session = manager.create_session()
    manager.join(session.id, "C-1")
    manager.leave(session.id, "C-1")
    armed = timers.pending[0]
    manager.join(session.id, "C-2")
    assert armed.cancelled
    # 이미 실행에 들어간 오래된 타이머도 다시 채워진 세션을 지우지 못한다
    armed.fire()
    assert manager.snapshot(session.id)["activeUsers"] == 1


def test_stale_timer_does_not_delete_after_rearm(manager, timers):
    session = manager.create_session()
    manager.join(session.id, "C-1")
    manager.leave(session.id, "C-1")
    stale = timers.pending[0]
    manager.join(session.id, "C-1")
    manager.leave(session.id, "C-1")
    current = timers.pending[0]
    assert current is not stale
    stale.fire()
    assert manager.store.get(session.id) is not None
    current.fire()
    assert manager.store.get(session.id) is None


def test_only_last_leave_arms_timer(manager, timers):
    session = manager.create_session()
    manager.join(session.id, "C-1")
    manager.join(session.id, "C-2")
    manager.leave(session.id, "C-1")
    assert timers.pending == []


def test_disconnect_leaves_every_joined_session(manager):
    a = manager.create_session("a")
    b = manager.create_session("b")
    c = manager.create_session("c")
    manager.join(a.id, "C-1")
    manager.join(b.id, "C-1")
    manager.join(b.id, "C-2")
    manager.join(c.id, "C-2")
    assert manager.sessions_of("C-1") == {a.id, b.id}

    results = manager.disconnect("C-1")

    assert {r.session_id for r in results} == {a.id, b.id}
    assert manager.sessions_of("C-1") == set()
    assert manager.snapshot(a.id)["activeUsers"] == 0
    assert manager.snapshot(b.id)["activeUsers"] == 1
    assert manager.snapshot(c.id)["activeUsers"] == 1
    assert manager.disconnect("C-1") == []


def test_explicit_leave_updates_reverse_index(manager):
    a = manager.create_session()
    manager.join(a.id, "C-1")
    manager.leave(a.id, "C-1")
    assert manager.sessions_of("C-1") == set()
    assert manager.disconnect("C-1") == []


def test_updates_require_membership(manager):
    session = manager.create_session("t", "old")
    assert manager.update_content(session.id, "C-stranger", "new") is None
    assert manager.update_title(session.id, "C-stranger", "new") is None
    assert manager.peers(session.id, "C-stranger") is None
    assert manager.update_content("unknown", "C-1", "new") is None
    assert manager.snapshot(session.id)["content"] == "old"


def test_updates_are_last_writer_wins(manager):
    session = manager.create_session("t", "base")
    manager.join(session.id, "C-1")
    manager.join(session.id, "C-2")
    assert manager.update_content(session.id, "C-1", "from one") == ("C-2",)
    assert manager.update_content(session.id, "C-2", "from two") == ("C-1",)
    assert manager.update_title(session.id, "C-1", "Renamed") == ("C-2",)
    snapshot = manager.snapshot(session.id)
    assert snapshot["content"] == "from two"
    assert snapshot["title"] == "Renamed"


def test_shutdown_cancels_timers_and_clears_sessions(timers):
    manager = SessionManager(timer_factory=timers)
    session = manager.create_session()
    manager.shutdown()
    assert timers.pending == []
    assert manager.store.get(session.id) is None


def test_real_timer_expires_session():
    manager = SessionManager(session_ttl=0.05)
    try:
        session = manager.create_session()
        deadline = time.monotonic() + 3
        while manager.store.get(session.id) is not None and time.monotonic() < deadline:
            time.sleep(0.02)
        assert manager.store.get(session.id) is None
    finally:
        manager.shutdown()
