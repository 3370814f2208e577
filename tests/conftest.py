from collections.abc import AsyncGenerator, Callable

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from codegen_gateway.core.config import settings

# Never let a developer's .env leak real keys or production checks into tests
settings.app_env = "development"
settings.sentry_dsn = ""

from codegen_gateway.gateway.gateway import CodeGenGateway, get_gateway  # noqa: E402
from codegen_gateway.gateway.rate_limiter import FixedWindowRateLimiter  # noqa: E402
from codegen_gateway.gateway.registry import build_registry  # noqa: E402
from codegen_gateway.gateway.retry import RetryPolicy  # noqa: E402
from codegen_gateway.main import app  # noqa: E402

Handler = Callable[[httpx.Request], httpx.Response]

NO_RETRY = RetryPolicy(max_retries=0, base_delay=0)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _make_gateway(
    handler: Handler,
    api_keys: dict[str, str] | None = None,
    max_requests: int = 20,
    clock: FakeClock | None = None,
    priority: tuple[str, ...] = ("groq", "openai", "anthropic", "google", "mistral"),
) -> CodeGenGateway:
    registry = build_registry(timeout=5.0, retry_policy=NO_RETRY, transport=httpx.MockTransport(handler))
    limiter = FixedWindowRateLimiter(max_requests=max_requests, window_seconds=60, clock=clock or FakeClock())
    return CodeGenGateway(registry, limiter, api_keys=api_keys or {}, priority=priority)


@pytest.fixture
def make_gateway() -> Callable[..., CodeGenGateway]:
    """Factory for a gateway whose adapters talk to an httpx.MockTransport handler."""
    return _make_gateway


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.pop(get_gateway, None)


@pytest.fixture
def use_gateway() -> Callable[[CodeGenGateway], CodeGenGateway]:
    """Install a gateway for the app under test."""

    def _install(gateway: CodeGenGateway) -> CodeGenGateway:
        app.dependency_overrides[get_gateway] = lambda: gateway
        return gateway

    return _install
