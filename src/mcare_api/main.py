"""FastAPI 应用入口点。"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from mcare_api.api.router import api_router
from mcare_api.core.config import Settings, get_settings
from mcare_api.core.log import setup_logging
from mcare_api.core.security import TokenCodec
from mcare_api.exceptions import register_exception_handlers
from mcare_api.middlewares import register_middlewares
from mcare_api.models.enums import AccountRole
from mcare_api.services import (
    AuthenticationOrchestrator,
    CodeSweeper,
    IdentityResolver,
    LoggingSmsSender,
    WeChatIdentityBroker,
    build_code_store,
)

settings = get_settings()


def build_orchestrator(app_settings: Settings) -> AuthenticationOrchestrator:
    """按配置装配认证门面及其依赖。"""
    return AuthenticationOrchestrator(
        codec=TokenCodec.from_settings(app_settings),
        code_store=build_code_store(app_settings),
        broker=WeChatIdentityBroker.from_settings(app_settings),
        resolver=IdentityResolver(default_role=AccountRole(app_settings.auth_default_role)),
        sms_sender=LoggingSmsSender(),
        code_ttl_seconds=app_settings.verification_code_ttl_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """启动验证码清理线程，退出时释放外部连接。"""
    orchestrator: AuthenticationOrchestrator = app.state.auth_orchestrator
    sweeper = CodeSweeper(
        orchestrator.code_store,
        interval_seconds=app.state.settings.verification_sweep_interval_seconds,
    )
    sweeper.start()
    try:
        yield
    finally:
        sweeper.stop()
        orchestrator.broker.close()


def create_app(
    app_settings: Settings | None = None,
    *,
    orchestrator: AuthenticationOrchestrator | None = None,
) -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    app_settings = app_settings or settings
    setup_logging()
    app = FastAPI(
        title=app_settings.app_name,
        version="1.0.0",
        debug=app_settings.app_debug,
        lifespan=lifespan,
        description=(
            "母婴护理预约平台身份认证接口。\n\n"
            "所有业务接口统一返回：`{request_id, data, meta}`。\n"
            "支持密码、短信验证码、微信授权三种登录方式，统一签发 Bearer 访问令牌。\n"
            "认证请求的响应头 `X-New-Token` 携带续期后的令牌。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "auth", "description": "登录、注册、验证码与令牌续期。"},
        ],
    )
    app.state.settings = app_settings
    app.state.auth_orchestrator = orchestrator or build_orchestrator(app_settings)

    register_middlewares(app, app_settings)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=app_settings.api_prefix)
    return app


app = create_app()
