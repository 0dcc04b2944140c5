"""
FastAPI dependencies for identity and authorization.

  get_request_context (JWT -> RequestContext)
      └── require_admin (RequestContext -> RequestContext)  [ADMIN / SUPERUSER]

  get_session_factory
      └── get_unit_of_work (-> UnitOfWork)  [mutating endpoints, retried]

The RequestContext is immutable and is passed explicitly to every service
call; services never look at the token or the HTTP request themselves.
Company scoping happens in the services (a resource owned by another
company raises AccessDenied), role checks for administrative operations
happen here.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from ledger.context import RequestContext, Role
from ledger.database import UnitOfWork, get_session_factory
from ledger.exceptions import AccessDenied
from ledger.security import decode_access_token

# Tokens are issued by the identity service; tokenUrl only feeds the docs UI.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_request_context(token: str = Depends(oauth2_scheme)) -> RequestContext:
    """
    Verify the bearer token and build the RequestContext from its claims.

    Raises:
        HTTPException 401: If the token is invalid, expired or lacks claims.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
        user_id = int(payload["sub"])
        company_id = int(payload["company_id"])
        role = Role(payload.get("role", Role.USER.value))
    except (JWTError, KeyError, TypeError, ValueError):
        raise credentials_exception

    return RequestContext(company_id=company_id, user_id=user_id, role=role)


async def require_admin(
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    """
    Require ADMIN or SUPERUSER for administrative ledger operations
    (balance adjustment, negative-balance policy, card configuration,
    invoice closing/cancellation, overdue sweeps).
    """
    if not ctx.is_admin:
        raise AccessDenied("Administrator role required for this operation")
    return ctx


async def get_unit_of_work(session_factory=Depends(get_session_factory)) -> UnitOfWork:
    """Unit of work for endpoints that write to the ledger."""
    return UnitOfWork(session_factory)
