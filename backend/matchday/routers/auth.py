"""Bearer-token verification and request rate limiting.

Tokens are issued by the external account service; this API only verifies
them. The ``sub`` claim is the user id, ``email`` and ``is_admin`` are
optional claims.
"""

import os
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Header, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from ..exceptions import http_problem


def get_jwt_secret() -> str:
  secret = os.getenv("JWT_SECRET")
  if not secret:
    raise RuntimeError("JWT_SECRET environment variable is required")
  if len(secret) < 32 or secret.lower() in {"secret", "changeme", "default"}:
    raise RuntimeError(
        "JWT_SECRET must be at least 32 characters and not a common default"
    )
  return secret


JWT_ALG = "HS256"


def _rate_limits_disabled() -> bool:
  return (os.getenv("DISABLE_RATE_LIMITS") or "").lower() == "true"


def _get_client_ip(request: Request) -> str:
  forwarded = request.headers.get("X-Forwarded-For")
  if forwarded:
    parts = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
    if parts:
      return parts[-1]
  real_ip = request.headers.get("X-Real-IP")
  if real_ip:
    return real_ip
  return request.client.host if request.client else ""


limiter = Limiter(key_func=_get_client_ip)


def write_rate_limit() -> str:
  if _rate_limits_disabled():
    return "1000/second"
  return "30/minute"


def vote_rate_limit() -> str:
  if _rate_limits_disabled():
    return "1000/second"
  return "10/minute"


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
  detail = exc.detail if isinstance(exc.detail, str) else ""
  if detail:
    message = f"rate limit exceeded: {detail}"
  else:
    message = "rate limit exceeded: please wait before submitting another request."
  return JSONResponse(
      status_code=429,
      content={
          "detail": message,
          "code": "rate_limit_exceeded",
      },
  )


@dataclass(frozen=True)
class AuthUser:
  id: str
  email: str | None = None
  is_admin: bool = False


def _extract_bearer_token(authorization: str | None) -> str:
  if authorization and authorization.lower().startswith("bearer "):
    return authorization.split(" ", 1)[1]

  raise http_problem(
      status_code=401,
      detail="missing token",
      code="auth_missing_token",
  )


def decode_token(token: str) -> dict[str, Any]:
  try:
    return jwt.decode(token, get_jwt_secret(), algorithms=[JWT_ALG])
  except jwt.ExpiredSignatureError:
    raise http_problem(
        status_code=401,
        detail="token expired",
        code="auth_token_expired",
    )
  except jwt.PyJWTError:
    raise http_problem(
        status_code=401,
        detail="invalid token",
        code="auth_invalid_token",
    )


async def get_current_user(authorization: str | None = Header(None)) -> AuthUser:
  payload = decode_token(_extract_bearer_token(authorization))
  uid = payload.get("sub")
  if not uid or not isinstance(uid, str):
    raise http_problem(
        status_code=401,
        detail="token has no subject",
        code="auth_invalid_token",
    )
  email = payload.get("email")
  return AuthUser(
      id=uid,
      email=email.strip().lower() if isinstance(email, str) and email.strip() else None,
      is_admin=bool(payload.get("is_admin")),
  )
