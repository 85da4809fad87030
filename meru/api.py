"""FastAPI transport exposing the Meru account operations as JSON endpoints."""
from __future__ import annotations

import os
from typing import Dict, Optional

from fastapi import FastAPI, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import load_config_from_env
from .results import OperationResult
from .service import MeruService, build_service

SESSION_COOKIE_NAME = "meru_session"
SESSION_HEADER_NAME = "X-Session-Token"


class CreateAccountRequest(BaseModel):
    user: str = Field(..., max_length=256)
    password: str = Field(..., max_length=1024)
    invite: str = Field(..., max_length=256)
    domain: str | int


class ChangePasswordRequest(BaseModel):
    email: str = Field(..., max_length=512)
    oldpassword: str = Field(..., max_length=1024)
    newpassword: str = Field(..., max_length=1024)


class CreateInviteRequest(BaseModel):
    email: str = Field(..., max_length=512)


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=512)
    password: str = Field(..., max_length=1024)


class LogoutRequest(BaseModel):
    token: Optional[str] = Field(default=None, max_length=256)


def _trusted_proxy_hosts() -> list[str] | str:
    raw = os.getenv("MERU_TRUSTED_PROXIES")
    if not raw:
        return "127.0.0.1"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "127.0.0.1"


def _client_ip(request: Request) -> str:
    return request.client.host if request.client is not None else ""


def _respond(result: OperationResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_hint, content=result.to_payload())


def create_app(*, service: MeruService | None = None) -> FastAPI:
    if service is None:
        service = build_service(load_config_from_env(), database_path=os.getenv("MERU_DB_PATH"))

    secure_cookies = service.config.secure_cookies

    app = FastAPI(
        title="Meru",
        description="Invite-gated mailbox signup and login sessions",
        version="1.0.0",
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts())
    app.state.service = service

    def _issue_session_cookie(response: Response, token: str) -> None:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            token,
            max_age=service.sessions.cookie_max_age,
            secure=secure_cookies,
            httponly=True,
            samesite="lax",
            path="/",
        )

    @app.get("/health")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/account")
    def create_account(payload: CreateAccountRequest) -> JSONResponse:
        result = service.create_account(payload.user, payload.password, payload.invite, str(payload.domain))
        return _respond(result)

    @app.post("/account/password")
    def change_password(payload: ChangePasswordRequest, request: Request) -> JSONResponse:
        result = service.change_password(payload.email, payload.oldpassword, payload.newpassword)
        response = _respond(result)
        if result.ok and request.cookies.get(SESSION_COOKIE_NAME):
            response.delete_cookie(SESSION_COOKIE_NAME, path="/")
        return response

    @app.get("/domain")
    def get_domain(domain_ref: str = Query(..., alias="id")) -> JSONResponse:
        return _respond(service.get_domain(domain_ref))

    @app.post("/invite")
    def create_invite(payload: CreateInviteRequest) -> JSONResponse:
        return _respond(service.create_invite(payload.email))

    @app.post("/login")
    def login(payload: LoginRequest, request: Request) -> JSONResponse:
        result = service.login(payload.email, payload.password, _client_ip(request))
        response = _respond(result)
        if result.ok:
            _issue_session_cookie(response, result.data["token"])
        return response

    @app.post("/logout")
    def logout(request: Request, payload: Optional[LogoutRequest] = None) -> JSONResponse:
        token = (payload.token if payload is not None else None) or request.cookies.get(SESSION_COOKIE_NAME) or ""
        response = _respond(service.logout(token))
        response.delete_cookie(SESSION_COOKIE_NAME, path="/")
        return response

    @app.get("/session")
    def validate_session(
        request: Request,
        header_token: Optional[str] = Header(None, alias=SESSION_HEADER_NAME),
    ) -> JSONResponse:
        session_token = request.cookies.get(SESSION_COOKIE_NAME) or header_token or ""
        return _respond(service.validate_session(session_token, _client_ip(request)))

    return app


__all__ = ["SESSION_COOKIE_NAME", "SESSION_HEADER_NAME", "create_app"]
