from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Header, Query, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from config import get_settings
from errors import Forbidden, NotFound, Unauthorized, ValidationError
from validators import parse_currency

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


# Plain def so FastAPI runs the blocking user lookup in its threadpool.
def get_current_user(request: Request, token: str = Depends(oauth2_scheme)) -> Dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise Unauthorized("Could not validate credentials")
    except JWTError:
        raise Unauthorized("Could not validate credentials")
    try:
        return request.app.state.repos.users.get_by_id(user_id)
    except (NotFound, ValidationError):
        raise Unauthorized("Could not validate credentials")


def get_currency(
    currency: Optional[str] = Query(None),
    x_currency: Optional[str] = Header(None),
) -> str:
    code = currency or x_currency
    if not code:
        return get_settings().BASE_CURRENCY
    return parse_currency(code)


@dataclass(frozen=True)
class RequestContext:
    """Identity and display currency resolved once per request and passed down explicitly."""
    user_id: str
    account_type: str
    currency: str


def get_request_context(
    current_user=Depends(get_current_user),
    currency: str = Depends(get_currency),
) -> RequestContext:
    return RequestContext(
        user_id=str(current_user["_id"]),
        account_type=current_user.get("account_type"),
        currency=currency,
    )


def require_role(*account_types: str):
    """Dependency resolving the request context; 403 unless the account type is allowed.

    With no account types any authenticated user passes.
    """
    async def role_dep(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        if account_types and ctx.account_type not in account_types:
            raise Forbidden("Insufficient permissions")
        return ctx
    return role_dep
