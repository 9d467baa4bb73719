"""请求上下文依赖。

职责:
1. 从应用状态中取出认证门面（应用级单例，生命周期随应用）。
2. 解析并校验 Bearer 访问令牌。
3. 将令牌主体映射为本地 Account，并按需通过响应头下发续期令牌。
"""

from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from mcare_api.core.config import Settings
from mcare_api.core.security import extract_bearer_token
from mcare_api.db.session import get_db
from mcare_api.models.account import Account
from mcare_api.services.auth_flow import AuthenticationOrchestrator

bearer_scheme = HTTPBearer(auto_error=False)

NEW_TOKEN_HEADER = "X-New-Token"


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> AuthenticationOrchestrator:
    return request.app.state.auth_orchestrator


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """提取当前请求的访问令牌。"""
    authorization = None
    if credentials is not None and credentials.credentials:
        authorization = f"{credentials.scheme} {credentials.credentials}"
    return extract_bearer_token(authorization)


def get_current_account(
    response: Response,
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    orchestrator: AuthenticationOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_app_settings),
) -> Account:
    """认证当前请求并返回账号；开启滑动续期时在响应头附带新令牌。"""
    account = orchestrator.current_account(db, token)
    if settings.auth_sliding_refresh_enabled:
        refreshed = orchestrator.refresh(token)
        if refreshed is not None:
            response.headers[NEW_TOKEN_HEADER] = refreshed.token
    return account
