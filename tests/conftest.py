import asyncio
import base64
import inspect
import json
import os
import sys
import time
from pathlib import Path
from typing import Any, Callable, Optional

# Keep test runs from writing log files into the working tree.
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import httpx  # noqa: E402
import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sessionguard.auth import SessionStore  # noqa: E402
from sessionguard.config import AppConfig, reset_config  # noqa: E402
from sessionguard.database import MemoryStorage  # noqa: E402
from sessionguard.logger import StructuredLogger  # noqa: E402
from sessionguard.services import create_services  # noqa: E402
from sessionguard.services.session_cache import SessionCacheService  # noqa: E402
from sessionguard.services.token_guard import RedirectRecorder  # noqa: E402


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture(autouse=True)
def fresh_config():
    reset_config()
    yield
    reset_config()


# ==============================================================================
# Time
# ==============================================================================


class ManualTimer:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when ``advance`` is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        due = sorted(
            (t for t in self.timers if not t.cancelled and t.when <= self.now),
            key=lambda t: t.when,
        )
        for timer in due:
            self.timers.remove(timer)
            timer.callback()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


# ==============================================================================
# Tokens
# ==============================================================================


_HEADER: dict[str, str] = {"alg": "HS256", "typ": "JWT"}
_SIGNATURE: str = base64.urlsafe_b64encode(b"signature").rstrip(b"=").decode("ascii")


def _b64(data: dict[str, Any]) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def make_jwt(exp: Optional[float] = None, **claims: Any) -> str:
    payload = dict(claims)
    if exp is not None:
        payload["exp"] = int(exp)
    return f"{_b64(_HEADER)}.{_b64(payload)}.{_SIGNATURE}"


@pytest.fixture
def jwt_factory() -> Callable[..., str]:
    return make_jwt


@pytest.fixture
def valid_token() -> str:
    return make_jwt(exp=time.time() + 3600, sub="u-1")


@pytest.fixture
def expired_token() -> str:
    return make_jwt(exp=time.time() - 60, sub="u-1")


# ==============================================================================
# Backend
# ==============================================================================


class FakeBackend:
    """Route table served through ``httpx.MockTransport``.

    Each route is a callable taking the request and returning a response;
    ``reply`` builds one from a status, JSON body and headers.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method.upper(), path)] = handler

    def reply(
        self,
        method: str,
        path: str,
        status: int = 200,
        json_body: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if json_body is None:
                return httpx.Response(status, headers=headers)
            return httpx.Response(status, json=json_body, headers=headers)

        self.on(method, path, handler)

    def unreachable(self, method: str, path: str) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        self.on(method, path, handler)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": "no route"})
        return handler(request)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def body(self, request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


def auth_body(token: str, **overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "token": token,
        "user": "alice",
        "id": "u-1",
        "email": "alice@example.com",
        "recovery_email": "alice.backup@example.com",
        "name": "Alice",
        "tenant": "tenant-1",
        "role": "owner",
        "mfa": False,
    }
    body.update(overrides)
    return body


@pytest.fixture
def auth_body_factory() -> Callable[..., dict[str, Any]]:
    return auth_body


# ==============================================================================
# Components
# ==============================================================================


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name="sessionguard.tests", log_file="")


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def session_cache(storage, logger) -> SessionCacheService:
    return SessionCacheService(storage=storage, logger=logger, encrypt=False)


@pytest.fixture
def session(session_cache, logger) -> SessionStore:
    return SessionStore(cache=session_cache, logger=logger)


@pytest.fixture
def config(tmp_path) -> AppConfig:
    return AppConfig(
        API_BASE_URL="http://testserver",
        SESSION_ENCRYPTION=False,
        SESSION_SALT_PATH=str(tmp_path / "salt"),
        LOG_FILE="",
    )


@pytest.fixture
def navigator() -> RedirectRecorder:
    return RedirectRecorder()


class RecordingExporter:
    def __init__(self) -> None:
        self.downloaded: list[list[str]] = []
        self.copied: list[list[str]] = []

    def download(self, codes):
        self.downloaded.append(list(codes))
        return None

    def copy(self, codes) -> bool:
        self.copied.append(list(codes))
        return True


@pytest.fixture
def exporter() -> RecordingExporter:
    return RecordingExporter()


@pytest.fixture
def services(config, storage, navigator, scheduler, exporter, backend):
    """Fully wired container talking to ``backend``."""
    return create_services(
        config=config,
        storage=storage,
        navigator=navigator,
        scheduler=scheduler,
        exporter=exporter,
        transport=httpx.MockTransport(backend),
    )
