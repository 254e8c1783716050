import threading
import time
from typing import List

import pytest

from xjposs_py.oss.errors import AuthFailure, RequestFailure
from xjposs_py.oss.inner import Credential
from xjposs_py.oss.session import CredentialStore, RefreshCoordinator, Session

from tests.datas import FakeClock, FakeTimer


def make_credential(token: str, now: float, expires_in: int = 1800) -> Credential:
    return Credential(token=token, expires_at=int(now) + expires_in, issued_at=int(now))


class TestCredentialStore:
    def test_set_schedules_alarm_before_expiry(self, clock: FakeClock):
        store = CredentialStore(refresh_skew_seconds=60, clock=clock, timer_factory=FakeTimer)
        store.set(make_credential("t1", clock.now, expires_in=1800))

        timer = FakeTimer.created[-1]
        assert timer.started
        assert timer.interval == 1800 - 60
        assert store.get().token == "t1"

    def test_set_replaces_and_cancels_previous_alarm(self, clock: FakeClock):
        store = CredentialStore(clock=clock, timer_factory=FakeTimer)
        store.set(make_credential("t1", clock.now))
        first = FakeTimer.created[-1]
        store.set(make_credential("t2", clock.now))
        second = FakeTimer.created[-1]

        assert first.cancelled
        assert second is not first and not second.cancelled
        assert store.get().token == "t2"

    def test_no_alarm_when_already_in_skew(self, clock: FakeClock):
        FakeTimer.created.clear()
        store = CredentialStore(refresh_skew_seconds=60, clock=clock, timer_factory=FakeTimer)
        store.set(make_credential("t1", clock.now, expires_in=30))

        assert FakeTimer.created == []
        assert store.get().token == "t1"

    def test_clear_cancels_alarm_and_notifies(self, clock: FakeClock):
        store = CredentialStore(clock=clock, timer_factory=FakeTimer)
        logouts: List[int] = []
        store.add_logout_listener(lambda: logouts.append(1))
        store.set(make_credential("t1", clock.now))
        timer = FakeTimer.created[-1]

        store.clear()

        assert timer.cancelled
        assert store.get() is None
        assert logouts == [1]

    def test_failing_listener_does_not_stop_others(self, clock: FakeClock):
        store = CredentialStore(clock=clock, timer_factory=FakeTimer)
        logouts: List[int] = []

        def boom():
            raise RuntimeError("boom")

        store.add_logout_listener(boom)
        store.add_logout_listener(lambda: logouts.append(1))
        store.clear()
        assert logouts == [1]


class TestRefreshCoordinator:
    def _coordinator(self, clock: FakeClock, refresher) -> RefreshCoordinator:
        store = CredentialStore(clock=clock, timer_factory=FakeTimer)
        store.set(make_credential("old", clock.now))
        return RefreshCoordinator(store, refresher)

    def test_refresh_sets_new_credential(self, clock: FakeClock):
        seen: List[str] = []

        def refresher(credential: Credential) -> Credential:
            seen.append(credential.token)
            return make_credential("new", clock.now)

        coordinator = self._coordinator(clock, refresher)
        credential = coordinator.ensure_fresh_token()

        assert credential.token == "new"
        assert seen == ["old"]
        assert coordinator._store.get().token == "new"
        assert not coordinator.in_flight

    def test_failure_clears_store_and_raises_auth_failure(self, clock: FakeClock):
        def refresher(credential: Credential) -> Credential:
            raise RequestFailure("HTTP 500", status_code=500)

        coordinator = self._coordinator(clock, refresher)
        with pytest.raises(AuthFailure) as excinfo:
            coordinator.ensure_fresh_token()

        assert isinstance(excinfo.value.__cause__, RequestFailure)
        assert coordinator._store.get() is None
        assert not coordinator.in_flight

    def test_no_credential_no_network(self, clock: FakeClock):
        calls: List[int] = []
        store = CredentialStore(clock=clock, timer_factory=FakeTimer)
        coordinator = RefreshCoordinator(store, lambda c: calls.append(1))  # type: ignore

        with pytest.raises(AuthFailure):
            coordinator.ensure_fresh_token()
        assert calls == []

    def test_stale_token_already_replaced(self, clock: FakeClock):
        calls: List[int] = []
        coordinator = self._coordinator(clock, lambda c: calls.append(1))  # type: ignore

        credential = coordinator.ensure_fresh_token(stale_token="older")

        assert credential.token == "old"
        assert calls == []

    @pytest.mark.parametrize("n", [1, 2, 8, 32])
    def test_single_flight_under_concurrency(self, clock: FakeClock, n: int):
        calls: List[int] = []

        def slow_refresher(credential: Credential) -> Credential:
            calls.append(1)
            time.sleep(0.2)
            return make_credential(f"new-{len(calls)}", clock.now)

        coordinator = self._coordinator(clock, slow_refresher)
        barrier = threading.Barrier(n)
        results: List[object] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                r: object = coordinator.ensure_fresh_token(stale_token="old")
            except AuthFailure as err:
                r = err
            with lock:
                results.append(r)

        threads = [threading.Thread(target=worker) for _ in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(calls) == 1
        assert len(results) == n
        assert all(isinstance(r, Credential) and r.token == "new-1" for r in results)
        assert coordinator.pending_waiters == 0
        assert not coordinator.in_flight

    def test_single_flight_failure_reaches_all_waiters(self, clock: FakeClock):
        n = 6
        calls: List[int] = []

        def failing_refresher(credential: Credential) -> Credential:
            calls.append(1)
            time.sleep(0.2)
            raise AuthFailure("The refresh is rejected")

        coordinator = self._coordinator(clock, failing_refresher)
        barrier = threading.Barrier(n)
        results: List[object] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                r: object = coordinator.ensure_fresh_token(stale_token="old")
            except AuthFailure as err:
                r = err
            with lock:
                results.append(r)

        threads = [threading.Thread(target=worker) for _ in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(calls) == 1
        assert len(results) == n
        assert all(isinstance(r, AuthFailure) for r in results)
        assert coordinator._store.get() is None

    def test_failing_store_update_releases_all_waiters(self, clock: FakeClock):
        n = 3
        broken: List[bool] = []

        class BrokenTimer(FakeTimer):
            def start(self):
                if broken:
                    raise RuntimeError("can't start new thread")
                super().start()

        store = CredentialStore(clock=clock, timer_factory=BrokenTimer)
        store.set(make_credential("old", clock.now))
        broken.append(True)

        def refresher(credential: Credential) -> Credential:
            time.sleep(0.2)
            return make_credential("new", clock.now)

        coordinator = RefreshCoordinator(store, refresher)
        barrier = threading.Barrier(n)
        results: List[object] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                r: object = coordinator.ensure_fresh_token()
            except AuthFailure as err:
                r = err
            with lock:
                results.append(r)

        threads = [threading.Thread(target=worker, daemon=True) for _ in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert not any(t.is_alive() for t in threads)
        assert len(results) == n
        assert all(isinstance(r, AuthFailure) for r in results)
        assert store.get() is None
        assert not coordinator.in_flight


class TestSession:
    def test_alarm_refreshes_through_coordinator(self, clock: FakeClock):
        session = Session(clock=clock, timer_factory=FakeTimer)
        session.set_refresher(lambda c: make_credential("renewed", clock.now))
        session.init(make_credential("t1", clock.now))

        clock.advance(1800 - 60)
        FakeTimer.created[-1].fire()

        assert session.credential.token == "renewed"
        assert session.coordinator.refresh_count == 1

    def test_alarm_failure_ends_session(self, clock: FakeClock):
        logouts: List[int] = []

        def refresher(credential: Credential) -> Credential:
            raise AuthFailure("The refresh is rejected")

        session = Session(refresher=refresher, clock=clock, timer_factory=FakeTimer)
        session.add_logout_listener(lambda: logouts.append(1))
        session.init(make_credential("t1", clock.now))

        FakeTimer.created[-1].fire()

        assert not session.is_authenticated
        assert logouts == [1]

    def test_teardown(self, clock: FakeClock):
        session = Session(clock=clock, timer_factory=FakeTimer)
        session.init(make_credential("t1", clock.now))
        timer = FakeTimer.created[-1]

        session.teardown()

        assert session.credential is None
        assert timer.cancelled

    def test_refresh_without_refresher(self, clock: FakeClock):
        session = Session(clock=clock, timer_factory=FakeTimer)
        session.init(make_credential("t1", clock.now))

        with pytest.raises(AuthFailure):
            session.refresh_now()
        assert session.credential is None
