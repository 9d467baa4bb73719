"""健康检查接口。"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.orm import Session

from mcare_api.db.session import get_db
from mcare_api.dependencies import get_orchestrator
from mcare_api.schemas.common import ErrorResponse, HealthStatusData, SuccessResponse
from mcare_api.services.auth_flow import AuthenticationOrchestrator
from mcare_api.utils.response import success

router = APIRouter(prefix="/health", tags=["health"])


@router.get(
    "/live",
    summary="存活探针",
    description="进程存活即返回，不访问数据库与验证码存储。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
)
def live(request: Request):
    return success(request, {"status": "ok"})


@router.get(
    "/ready",
    summary="就绪探针",
    description="账号库与验证码存储均可用时才接收登录流量。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={503: {"model": ErrorResponse}},
)
def ready(
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthenticationOrchestrator = Depends(get_orchestrator),
):
    """依次检查账号库连通性与验证码存储。"""
    db.execute(text("select 1"))
    if not orchestrator.code_store.ping():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "CODE_STORE_UNAVAILABLE", "message": "验证码存储不可用。"},
        )
    return success(request, {"status": "ready"})
