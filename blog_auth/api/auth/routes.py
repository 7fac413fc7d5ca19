"""
认证相关API端点
"""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from blog_auth.config import config
from blog_auth.config.constants import StateDefaults
from blog_auth.core.enums import TokenKind
from blog_auth.core.exceptions import (
    AuthErrorCode,
    ERROR_MESSAGES,
    ERROR_STATUS,
    InvalidTokenException,
    build_error_body,
)
from blog_auth.core.logger import logger
from blog_auth.database import get_db
from blog_auth.models.api import (
    ApiResponse,
    LoginResponse,
    OAuthCallbackRequest,
    ProviderSummary,
    RefreshTokenRequest,
    RefreshTokenResponse,
)
from blog_auth.models.database import User
from blog_auth.services.auth.blacklist import TokenBlacklistService
from blog_auth.services.auth.dependencies import (
    get_oauth_service,
    get_refresh_coordinator,
    get_token_blacklist,
    get_token_validator,
)
from blog_auth.services.auth.oauth.service import CallbackOutcome, OAuthService
from blog_auth.services.auth.refresh import RefreshCoordinator
from blog_auth.services.auth.tokens import TokenValidator
from blog_auth.services.user.service import UserService
from blog_auth.utils.auth_utils import get_current_user, security

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _set_state_cookie(response: Response, state: str) -> None:
    response.set_cookie(
        key=config.oauth_state_cookie_name,
        value=state,
        max_age=config.oauth_state_ttl_seconds,
        path=StateDefaults.COOKIE_PATH,
        httponly=True,
        secure=config.oauth_state_cookie_secure,
        samesite="lax",
    )


def _clear_state_cookie(response: Response) -> None:
    response.delete_cookie(
        key=config.oauth_state_cookie_name,
        path=StateDefaults.COOKIE_PATH,
        httponly=True,
        secure=config.oauth_state_cookie_secure,
        samesite="lax",
    )


def _envelope(payload: Any) -> JSONResponse:
    return JSONResponse(content=ApiResponse.build(data=payload).model_dump(mode="json"))


@router.get("/providers")
async def list_providers(oauth_service: OAuthService = Depends(get_oauth_service)) -> ApiResponse:
    """获取已配置的登录方式"""
    providers = [ProviderSummary(**item) for item in oauth_service.list_providers()]
    return ApiResponse.build(data=providers)


@router.get("/login/{provider_type}")
async def login(
    provider_type: str,
    redirect: bool = Query(True),
    oauth_service: OAuthService = Depends(get_oauth_service),
) -> Response:
    """
    发起 OAuth 登录

    state 始终由服务端签发并写入 HttpOnly cookie；redirect=false 时返回授权 URL 供前端自行跳转。
    """
    login_redirect = await oauth_service.begin_login(provider_type)

    response: Response
    if redirect:
        response = RedirectResponse(url=login_redirect.url, status_code=status.HTTP_302_FOUND)
    else:
        response = _envelope(login_redirect.url)
    _set_state_cookie(response, login_redirect.state)
    return response


async def _finish_callback(
    request: Request,
    db: Session,
    oauth_service: OAuthService,
    provider_type: str,
    payload: OAuthCallbackRequest,
) -> JSONResponse:
    saved_state = payload.saved_state or request.cookies.get(config.oauth_state_cookie_name)

    outcome: CallbackOutcome = await oauth_service.handle_callback(
        db,
        provider_type,
        code=payload.code,
        state=payload.state,
        saved_state=saved_state,
        error=payload.error,
        error_description=payload.error_description,
    )

    if outcome.authenticated:
        assert outcome.user is not None and outcome.tokens is not None and outcome.login_time is not None
        body = LoginResponse(
            access_token=outcome.tokens.access_token,
            refresh_token=outcome.tokens.refresh_token,
            expires_in=outcome.tokens.expires_in,
            token_type=outcome.tokens.token_type,
            user_info=UserService.to_user_info(outcome.user),
            login_time=outcome.login_time,
        )
        response = _envelope(body.model_dump(mode="json"))
    else:
        error_code = outcome.error_code or AuthErrorCode.CSRF_MISMATCH
        status_code = ERROR_STATUS[error_code]
        response = JSONResponse(
            status_code=status_code,
            content=build_error_body(status_code, ERROR_MESSAGES[error_code], error_code.value),
        )

    _clear_state_cookie(response)
    return response


@router.get("/callback/{provider_type}")
async def oauth_callback(
    provider_type: str,
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    oauth_service: OAuthService = Depends(get_oauth_service),
) -> JSONResponse:
    """OAuth 回调（provider 直接重定向到此处），saved_state 取自 state cookie"""
    payload = OAuthCallbackRequest(
        code=code, state=state, error=error, error_description=error_description
    )
    return await _finish_callback(request, db, oauth_service, provider_type, payload)


@router.post("/callback/{provider_type}")
async def oauth_callback_post(
    provider_type: str,
    request: Request,
    payload: Optional[OAuthCallbackRequest] = Body(None),
    db: Session = Depends(get_db),
    oauth_service: OAuthService = Depends(get_oauth_service),
) -> JSONResponse:
    """OAuth 回调（前端回调页转发 code/state）"""
    return await _finish_callback(
        request, db, oauth_service, provider_type, payload or OAuthCallbackRequest()
    )


@router.post("/refresh")
async def refresh_token(
    payload: RefreshTokenRequest,
    db: Session = Depends(get_db),
    coordinator: RefreshCoordinator = Depends(get_refresh_coordinator),
) -> ApiResponse:
    """使用 refresh token 换取新的 access token"""
    result = await coordinator.refresh(db, payload.refresh_token)
    return ApiResponse.build(
        data=RefreshTokenResponse(access_token=result.access_token, expires_in=result.expires_in)
    )


@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)) -> ApiResponse:
    return ApiResponse.build(data=UserService.to_user_profile(current_user))


@router.post("/logout")
async def logout(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    validator: TokenValidator = Depends(get_token_validator),
    blacklist: TokenBlacklistService = Depends(get_token_blacklist),
) -> ApiResponse:
    """
    登出

    令牌无状态，登出主要由客户端清除会话完成；开启黑名单时吊销当前 access token。
    """
    if credentials is not None and blacklist.enabled:
        try:
            claims = validator.verify(credentials.credentials, TokenKind.ACCESS)
        except InvalidTokenException:
            logger.debug("登出时令牌已失效，跳过吊销")
        else:
            await blacklist.revoke(claims)
    return ApiResponse.build(message="已登出")
