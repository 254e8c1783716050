import threading
import time
from typing import List

import pytest
import requests

from xjposs_py.oss import XjpOssApi
from xjposs_py.oss.errors import AuthFailure, RequestFailure

from tests.datas import Call, FakeClock, FakeTransport, make_response


def route_refresh(backend: FakeTransport, token: str = "token-2", delay: float = 0.0):
    def refresh(call: Call):
        if delay:
            time.sleep(delay)
        return 200, {"access_token": token, "expires_in": 1800}

    backend.route("POST", "/auth/refresh", refresh)


def route_files_accepting(backend: FakeTransport, token: str):
    def files(call: Call):
        if call.authorization != f"Bearer {token}":
            return 401, {"detail": "Token expired"}
        return 200, []

    backend.route("GET", "/files/", files)


class TestXjpOss:
    def test_login(self, api: XjpOssApi, backend: FakeTransport, clock: FakeClock):
        backend.route(
            "POST",
            "/auth/login",
            (200, {"access_token": "token-1", "token_type": "bearer", "expires_in": 1800}),
        )

        credential = api.login("alice", "secret")

        assert credential.token == "token-1"
        assert credential.token_type == "Bearer"
        assert credential.expires_at == int(clock.now) + 1800
        assert api.credential == credential
        login_call = backend.calls_to("POST", "/auth/login")[0]
        assert login_call.json == {"username": "alice", "password": "secret"}
        assert "Authorization" not in login_call.headers

    def test_login_with_wrong_password(self, api: XjpOssApi, backend: FakeTransport):
        backend.route("POST", "/auth/login", (401, {"detail": "Invalid credentials"}))

        with pytest.raises(AuthFailure, match="Invalid credentials"):
            api.login("alice", "wrong")
        assert not api.is_authenticated
        assert backend.calls_to("POST", "/auth/refresh") == []

    def test_attach_credential(self, logged_in_api: XjpOssApi, backend: FakeTransport):
        route_files_accepting(backend, "token-1")

        assert logged_in_api.list_files() == []
        call = backend.calls_to("GET", "/files/")[0]
        assert call.authorization == "Bearer token-1"
        assert call.params == {"skip": 0, "limit": 100}
        assert call.timeout == 5

    def test_unauthenticated_request(self, api: XjpOssApi, backend: FakeTransport):
        backend.route("GET", "/health", (200, {"status": "ok"}))

        assert api.health()
        assert "Authorization" not in backend.calls_to("GET", "/health")[0].headers

    def test_api_key_fallback(self, api: XjpOssApi, backend: FakeTransport):
        backend.route("GET", "/files/", (200, []))
        api.set_api_key("key-1")

        api.list_files()
        assert backend.calls_to("GET", "/files/")[0].authorization == "ApiKey key-1"

        api.clear_api_key()
        api.list_files()
        assert "Authorization" not in backend.calls_to("GET", "/files/")[1].headers

    def test_401_refresh_and_replay(self, logged_in_api: XjpOssApi, backend: FakeTransport):
        route_files_accepting(backend, "token-2")
        route_refresh(backend, "token-2")

        assert logged_in_api.list_files() == []

        file_calls = backend.calls_to("GET", "/files/")
        assert [c.authorization for c in file_calls] == ["Bearer token-1", "Bearer token-2"]
        refresh_calls = backend.calls_to("POST", "/auth/refresh")
        assert len(refresh_calls) == 1
        assert refresh_calls[0].authorization == "Bearer token-1"
        assert logged_in_api.credential.token == "token-2"

    def test_401_after_replay_ends_session(self, logged_in_api: XjpOssApi, backend: FakeTransport):
        backend.route("GET", "/files/", (401, {"detail": "Token expired"}))
        route_refresh(backend, "token-2")
        logouts: List[int] = []
        logged_in_api.session.add_logout_listener(lambda: logouts.append(1))

        with pytest.raises(AuthFailure):
            logged_in_api.list_files()

        assert len(backend.calls_to("GET", "/files/")) == 2
        assert len(backend.calls_to("POST", "/auth/refresh")) == 1
        assert not logged_in_api.is_authenticated
        assert logouts == [1]

    def test_refresh_rejected(self, logged_in_api: XjpOssApi, backend: FakeTransport):
        backend.route("GET", "/files/", (401, {"detail": "Token expired"}))
        backend.route("POST", "/auth/refresh", (401, {"detail": "Token expired"}))
        logouts: List[int] = []
        logged_in_api.session.add_logout_listener(lambda: logouts.append(1))

        with pytest.raises(AuthFailure):
            logged_in_api.list_files()

        assert len(backend.calls_to("GET", "/files/")) == 1
        assert not logged_in_api.is_authenticated
        assert logouts == [1]

    def test_401_without_credential(self, api: XjpOssApi, backend: FakeTransport):
        backend.route("GET", "/files/", (401, {"detail": "Not authenticated"}))

        with pytest.raises(AuthFailure):
            api.list_files()
        assert len(backend.calls_to("GET", "/files/")) == 1
        assert backend.calls_to("POST", "/auth/refresh") == []

    @pytest.mark.parametrize("n", [2, 5, 16])
    def test_concurrent_401s_share_one_refresh(self, logged_in_api: XjpOssApi, backend: FakeTransport, n: int):
        route_files_accepting(backend, "token-2")
        route_refresh(backend, "token-2", delay=0.2)

        barrier = threading.Barrier(n)
        results: List[object] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                r: object = logged_in_api.list_files()
            except AuthFailure as err:
                r = err
            with lock:
                results.append(r)

        threads = [threading.Thread(target=worker) for _ in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(backend.calls_to("POST", "/auth/refresh")) == 1
        assert results == [[] for _ in range(n)]
        # Every request is replayed at most once
        assert len(backend.calls_to("GET", "/files/")) <= 2 * n

    def test_concurrent_401s_fail_together(self, logged_in_api: XjpOssApi, backend: FakeTransport):
        n = 8
        backend.route("GET", "/files/", (401, {"detail": "Token expired"}))

        def refresh(call: Call):
            time.sleep(0.2)
            return 401, {"detail": "Refresh token revoked"}

        backend.route("POST", "/auth/refresh", refresh)

        barrier = threading.Barrier(n)
        results: List[object] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                r: object = logged_in_api.list_files()
            except AuthFailure as err:
                r = err
            with lock:
                results.append(r)

        threads = [threading.Thread(target=worker) for _ in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(backend.calls_to("POST", "/auth/refresh")) == 1
        assert len(results) == n
        assert all(isinstance(r, AuthFailure) for r in results)
        assert not logged_in_api.is_authenticated

    def test_request_failure_is_not_retried(self, logged_in_api: XjpOssApi, backend: FakeTransport):
        backend.route("GET", "/files/3", (500, {"detail": "Internal error"}))

        with pytest.raises(RequestFailure) as excinfo:
            logged_in_api.get_file(3)

        assert excinfo.value.status_code == 500
        assert excinfo.value.detail == "Internal error"
        assert len(backend.calls_to("GET", "/files/3")) == 1
        assert logged_in_api.is_authenticated

    def test_transport_error(self, logged_in_api: XjpOssApi, backend: FakeTransport):
        def timeout(call: Call):
            raise requests.exceptions.ReadTimeout("read timed out")

        backend.route("GET", "/files/3", timeout)

        with pytest.raises(RequestFailure) as excinfo:
            logged_in_api.get_file(3)
        assert excinfo.value.status_code is None
        assert isinstance(excinfo.value.__cause__, requests.exceptions.ReadTimeout)

    def test_verify_token(self, api: XjpOssApi, backend: FakeTransport):
        def me(call: Call):
            if call.authorization == "Bearer good":
                return 200, {"id": 1, "username": "alice"}
            return 401, {"detail": "Invalid token"}

        backend.route("GET", "/auth/me", me)

        assert api.verify_token("good")
        assert not api.verify_token("bad")
        assert not api.is_authenticated

    def test_current_user(self, logged_in_api: XjpOssApi, backend: FakeTransport):
        backend.route(
            "GET",
            "/auth/me",
            (200, {"id": 3, "username": "alice", "email": "a@example.com", "is_active": True}),
        )

        user = logged_in_api.current_user()
        assert user.id == 3
        assert user.username == "alice"
        assert user.email == "a@example.com"

    def test_logout(self, logged_in_api: XjpOssApi):
        logged_in_api.logout()
        assert logged_in_api.credential is None

    def test_empty_response(self, logged_in_api: XjpOssApi, backend: FakeTransport):
        backend.route("DELETE", "/files/3", lambda call: make_response(204))

        assert logged_in_api.delete_file(3) is None

    def test_refresh_now(self, logged_in_api: XjpOssApi, backend: FakeTransport, clock: FakeClock):
        route_refresh(backend, "token-2")
        clock.advance(100)

        credential = logged_in_api.refresh_now()

        assert credential.token == "token-2"
        assert credential.issued_at == int(clock.now)
        assert logged_in_api.credential == credential
        assert backend.calls_to("POST", "/auth/refresh")[0].authorization == "Bearer token-1"
