from pathlib import Path

import pytest

from xjposs_py.oss import XjpOssApi, Session

from tests.datas import BASE_URL, FakeClock, FakeTimer, FakeTransport


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def session(clock: FakeClock) -> Session:
    FakeTimer.created.clear()
    return Session(clock=clock, timer_factory=FakeTimer)


@pytest.fixture
def api(backend: FakeTransport, session: Session) -> XjpOssApi:
    api = XjpOssApi(base_url=BASE_URL, session=session, request_timeout=5)
    api._xjposs._session = backend
    api._xjposs._upload_session = backend
    return api


@pytest.fixture
def logged_in_api(api: XjpOssApi, backend: FakeTransport) -> XjpOssApi:
    backend.route(
        "POST",
        "/auth/login",
        (200, {"access_token": "token-1", "token_type": "bearer", "expires_in": 1800}),
    )
    api.login("alice", "secret")
    return api


@pytest.fixture
def make_file(tmp_path: Path):
    def make(size: int, name: str = "demo.bin") -> Path:
        path = tmp_path / name
        path.write_bytes(bytes(i % 251 for i in range(size)))
        return path

    return make
