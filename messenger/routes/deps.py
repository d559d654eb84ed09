from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from messenger.errors import ChatError, ErrorKind
from messenger.models.user import UserRecord
from messenger.security.auth import verify_token

security = HTTPBearer()

ERROR_STATUS = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorKind.RECIPIENT_BLOCKED: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.TRANSIENT_STORE_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

def http_error(kind: ErrorKind, detail: str) -> HTTPException:
    """HTTPException for an engine error kind"""
    return HTTPException(
        status_code=ERROR_STATUS.get(kind, status.HTTP_400_BAD_REQUEST),
        detail={"code": kind.value, "message": detail},
    )

def from_chat_error(e: ChatError) -> HTTPException:
    return http_error(e.kind, e.detail)

def get_engine(request: Request):
    """The ChatEngine built by the application lifespan"""
    return request.app.state.engine

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    engine=Depends(get_engine),
) -> UserRecord:
    """Get current user from JWT token"""
    payload = verify_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user = await engine.directory.find_user(payload.get('user_id', ''))
    except ChatError as e:
        raise from_chat_error(e)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user
