from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from .config import ConsoleConfig
from .db import get_db
from .models import ConsoleSession
from .oidc import OIDCError, OIDCProvider, decode_claims, generate_code_verifier

logger = logging.getLogger(__name__)

SESSION_COOKIE = "vmconsole_session"
LOGIN_WINDOW = timedelta(minutes=10)


@dataclass
class UserSession:
    id_token: str
    user: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        for key in ("name", "preferred_username", "email", "sub"):
            if self.user.get(key):
                return str(self.user[key])
        return "user"


class LoginRequired(Exception):
    def __init__(self, location: str, session_token: str, max_age: int) -> None:
        self.location = location
        self.session_token = session_token
        self.max_age = max_age
        super().__init__(location)


def get_config(request: Request) -> ConsoleConfig:
    return request.app.state.config


def get_oidc(request: Request) -> OIDCProvider:
    return request.app.state.oidc


def set_session_cookie(response, token: str, config: ConsoleConfig, max_age: int) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        httponly=True,
        samesite="lax",
        secure=config.session_cookie_secure,
        max_age=max_age,
        path=config.base_path or "/",
    )


def _utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _load_session(request: Request, db: Session) -> ConsoleSession | None:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return None
    session = db.query(ConsoleSession).filter(ConsoleSession.token == token).first()
    if not session:
        return None
    if _utc(session.expires_at) < datetime.now(timezone.utc):
        db.delete(session)
        db.commit()
        return None
    return session


def _return_to(request: Request, config: ConsoleConfig) -> str:
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return f"{config.base_path}{path}" if config.base_path else path


def require_user_session(
    request: Request,
    db: Session = Depends(get_db),
    config: ConsoleConfig = Depends(get_config),
    oidc: OIDCProvider = Depends(get_oidc),
) -> UserSession:
    session = _load_session(request, db)
    if session and session.id_token:
        return UserSession(id_token=session.id_token, user=json.loads(session.user_json or "{}"))

    now = datetime.now(timezone.utc)
    if session is None:
        session = ConsoleSession(token=secrets.token_urlsafe(32), created_at=now, user_json="{}")
        db.add(session)
    session.code_verifier = generate_code_verifier()
    session.state = secrets.token_urlsafe(16)
    session.return_to = _return_to(request, config)
    session.expires_at = now + LOGIN_WINDOW
    location = oidc.authorization_url(code_verifier=session.code_verifier, state=session.state)
    db.commit()
    raise LoginRequired(location, session.token, int(LOGIN_WINDOW.total_seconds()))


def authorize_user(request: Request, db: Session, config: ConsoleConfig, oidc: OIDCProvider) -> RedirectResponse:
    session = _load_session(request, db)
    if session is None or not session.code_verifier:
        raise OIDCError("missing code_verifier from session")

    params = request.query_params
    if params.get("error"):
        raise OIDCError(f"identity provider returned {params['error']}: {params.get('error_description', '')}")
    if not params.get("code"):
        raise OIDCError("callback is missing the authorization code")
    if session.state and params.get("state") != session.state:
        raise OIDCError("callback state does not match the login request")

    token_set = oidc.exchange_code(code=params["code"], code_verifier=session.code_verifier)
    if not token_set.get("id_token"):
        raise OIDCError("token response did not include an id_token")
    session.access_token = token_set.get("access_token")
    session.id_token = token_set["id_token"]
    session.user_json = json.dumps(decode_claims(token_set.get("access_token") or token_set["id_token"]))

    return_to = session.return_to or (config.base_path or "/")
    session.code_verifier = None
    session.state = None
    session.return_to = None
    session.expires_at = datetime.now(timezone.utc) + timedelta(hours=config.session_hours)
    db.commit()
    logger.info("user session established")

    response = RedirectResponse(url=return_to, status_code=303)
    set_session_cookie(response, session.token, config, config.session_hours * 3600)
    return response


def logout_user(request: Request, db: Session, config: ConsoleConfig) -> RedirectResponse:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        db.query(ConsoleSession).filter(ConsoleSession.token == token).delete()
        db.commit()
    response = RedirectResponse(url=f"{config.base_path}/auth/logout/success", status_code=303)
    response.delete_cookie(SESSION_COOKIE, path=config.base_path or "/")
    return response
