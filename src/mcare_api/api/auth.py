"""认证接口。"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from mcare_api.db.session import get_db
from mcare_api.dependencies import get_bearer_token, get_current_account, get_orchestrator
from mcare_api.models.account import Account
from mcare_api.schemas.auth import (
    AccountSummary,
    AuthLoginData,
    PasswordLoginRequest,
    PhoneSendCodeData,
    PhoneSendCodeRequest,
    PhoneVerifyRequest,
    RegisterRequest,
    TokenRefreshData,
    WeChatLoginRequest,
)
from mcare_api.schemas.common import ErrorResponse, SuccessResponse
from mcare_api.services.auth_flow import AuthenticationOrchestrator, AuthResult
from mcare_api.utils.response import success

router = APIRouter(prefix="/auth", tags=["auth"])


def _account_summary(account: Account) -> dict:
    return AccountSummary.model_validate(account).model_dump()


def _login_payload(result: AuthResult) -> dict:
    return {
        "access_token": result.token.token,
        "token_type": "bearer",
        "expires_at": result.token.expires_at,
        "expires_in": result.token.expires_in(),
        "is_new_account": result.is_new_account,
        "account": _account_summary(result.account),
    }


@router.post(
    "/register",
    summary="注册密码账号",
    description="使用用户名（或邮箱）+ 密码注册，成功后直接返回访问令牌。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLoginData],
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def register(
    payload: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthenticationOrchestrator = Depends(get_orchestrator),
):
    """注册密码账号。"""
    result = orchestrator.register(
        db,
        handle=payload.username,
        password=payload.password,
        role=payload.role,
        display_name=payload.display_name,
        phone=payload.phone,
    )
    return success(request, _login_payload(result))


@router.post(
    "/login",
    summary="密码登录",
    description="使用用户名、邮箱或手机号 + 密码登录，令牌主体为本次登录使用的标识。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLoginData],
    responses={401: {"model": ErrorResponse}},
)
def login(
    payload: PasswordLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthenticationOrchestrator = Depends(get_orchestrator),
):
    """密码登录并签发访问令牌。"""
    result = orchestrator.login_with_password(db, payload.username, payload.password)
    return success(request, _login_payload(result))


@router.post(
    "/phone/send-code",
    summary="发送短信验证码",
    description="同一手机号 60 秒内只能发送一次，验证码 5 分钟内有效。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PhoneSendCodeData],
    responses={429: {"model": ErrorResponse}},
)
def send_phone_code(
    payload: PhoneSendCodeRequest,
    request: Request,
    orchestrator: AuthenticationOrchestrator = Depends(get_orchestrator),
):
    """发送短信验证码。"""
    expires_in = orchestrator.send_phone_code(payload.country_code, payload.phone_number)
    return success(
        request,
        {"success": True, "message": "Verification code sent successfully", "expires_in": expires_in},
    )


@router.post(
    "/phone/verify",
    summary="短信验证码登录",
    description="校验验证码后登录，手机号首次登录时自动创建账号。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLoginData],
    responses={400: {"model": ErrorResponse}},
)
def verify_phone_code(
    payload: PhoneVerifyRequest,
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthenticationOrchestrator = Depends(get_orchestrator),
):
    """校验短信验证码并登录。"""
    result = orchestrator.verify_phone_and_login(
        db,
        payload.country_code,
        payload.phone_number,
        payload.verification_code,
        payload.role,
        payload.name,
    )
    return success(request, _login_payload(result))


@router.post(
    "/wechat/login",
    summary="微信授权登录",
    description="使用微信授权码登录，openid 首次出现时自动创建账号。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLoginData],
    responses={502: {"model": ErrorResponse}},
)
def wechat_login(
    payload: WeChatLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthenticationOrchestrator = Depends(get_orchestrator),
):
    """微信授权码登录。"""
    result = orchestrator.login_with_wechat(db, payload.code, payload.role)
    return success(request, _login_payload(result))


@router.post(
    "/refresh",
    summary="续期访问令牌",
    description="校验当前令牌及其账号状态后以相同主体重新签发，过期时间从当前时刻重新计算。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TokenRefreshData],
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def refresh(
    request: Request,
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    orchestrator: AuthenticationOrchestrator = Depends(get_orchestrator),
):
    """续期访问令牌，账号不存在或已禁用时拒绝。"""
    orchestrator.current_account(db, token)
    issued = orchestrator.refresh(token)
    if issued is None:
        raise RuntimeError("token refresh failed")
    return success(
        request,
        {
            "access_token": issued.token,
            "token_type": "bearer",
            "expires_at": issued.expires_at,
            "expires_in": issued.expires_in(),
        },
    )


@router.get(
    "/me",
    summary="获取当前身份",
    description="返回当前令牌对应的账号概要。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AccountSummary],
    responses={401: {"model": ErrorResponse}},
)
def me(request: Request, account: Account = Depends(get_current_account)):
    """查询当前登录账号。"""
    return success(request, _account_summary(account))
