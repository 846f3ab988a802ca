from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.application.services.fee_calculator import FeeCalculator
from app.application.services.platform_health_service import PlatformHealthMonitor
from app.core.security import decode_token, is_platform_admin
from app.infrastructure.logging.context import bind_user_id

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AdminPrincipal:
    subject: str
    email: str | None

    @property
    def actor(self) -> str:
        return self.email or self.subject


async def get_token_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        claims = decode_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    if claims.get("type") != "access" or not claims.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")

    request.state.user_id = str(claims["sub"])
    bind_user_id(request.state.user_id)
    return claims


def require_platform_admin(claims: dict = Depends(get_token_claims)) -> AdminPrincipal:
    if not is_platform_admin(claims):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Platform admin access required")
    return AdminPrincipal(subject=str(claims["sub"]), email=claims.get("email"))


def get_fee_calculator(request: Request) -> FeeCalculator:
    return request.app.state.fee_calculator


def get_health_monitor(request: Request) -> PlatformHealthMonitor:
    return request.app.state.health_monitor
