import os

# 在导入应用模块前固定测试配置，避免连接真实数据库。
os.environ.setdefault("MC_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("MC_AUTH_JWT_SECRET", "unit-test-secret")
os.environ.setdefault("MC_AUTH_PASSWORD_HASH_ITERATIONS", "1000")
os.environ.setdefault("MC_VERIFICATION_SWEEP_INTERVAL_SECONDS", "0")

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from mcare_api.core.security import TokenCodec
from mcare_api.models.base import Base
from mcare_api.services import (
    AuthenticationOrchestrator,
    IdentityResolver,
    InMemoryVerificationCodeStore,
    WeChatIdentityBroker,
)

ACCESS_TOKEN_URL = "https://wechat.test/sns/oauth2/access_token"
USER_INFO_URL = "https://wechat.test/sns/userinfo"


class FakeClock:
    """可手动推进的测试时钟。"""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingSmsSender:
    """记录下发的验证码，代替真实短信通道。"""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send_code(self, region: str, phone: str, code: str) -> None:
        self.sent.append((region, phone, code))

    def last_code(self) -> str:
        return self.sent[-1][2]


def wechat_handler(
    *,
    token_payload: dict | None = None,
    profile_payload: dict | None = None,
):
    """构造模拟微信接口的 MockTransport 处理函数。"""
    token_body = token_payload or {
        "access_token": "wx-access-token",
        "openid": "openid-001",
        "unionid": "union-001",
        "expires_in": 7200,
    }
    profile_body = profile_payload or {
        "openid": "openid-001",
        "nickname": "小月",
        "headimgurl": "https://img.test/a.png",
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/access_token"):
            return httpx.Response(200, json=token_body)
        if request.url.path.endswith("/userinfo"):
            return httpx.Response(200, json=profile_body)
        return httpx.Response(404)

    return handler


def build_broker(handler) -> WeChatIdentityBroker:
    return WeChatIdentityBroker(
        app_id="wx-app",
        app_secret="wx-secret",
        access_token_url=ACCESS_TOKEN_URL,
        user_info_url=USER_INFO_URL,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    # 文件库而非内存库，保证多线程测试共享同一份数据。
    db_engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'accounts.db'}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(db_engine)
    try:
        yield db_engine
    finally:
        db_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def sms_sender() -> RecordingSmsSender:
    return RecordingSmsSender()


@pytest.fixture
def code_store(clock: FakeClock) -> InMemoryVerificationCodeStore:
    return InMemoryVerificationCodeStore(clock=clock)


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec("unit-test-secret", ttl_seconds=3600, clock=clock)


@pytest.fixture
def orchestrator(codec, code_store, sms_sender) -> AuthenticationOrchestrator:
    return AuthenticationOrchestrator(
        codec=codec,
        code_store=code_store,
        broker=build_broker(wechat_handler()),
        resolver=IdentityResolver(),
        sms_sender=sms_sender,
    )
