from fastapi import APIRouter, HTTPException, status, Depends
from pydantic import BaseModel

from messenger.errors import ChatError
from messenger.models.user import UserRecord
from messenger.security.auth import create_access_token, get_password_hash, verify_password
from messenger.security.validation import validate_password_strength, validate_username

from .deps import from_chat_error, get_current_user, get_engine

router = APIRouter()

class RegisterRequest(BaseModel):
    username: str
    display_name: str
    password: str

class LoginRequest(BaseModel):
    username: str
    password: str

def _session(user: UserRecord) -> dict:
    return {
        'success': True,
        'user': user.to_public(),
        'access_token': create_access_token({'user_id': user.id}),
        'token_type': 'bearer',
    }

@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, engine=Depends(get_engine)):
    """Register a new user"""
    if not validate_username(request.username):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username must be 3-50 characters and contain only letters, numbers, underscores, and hyphens"
        )

    password_validation = validate_password_strength(request.password)
    if not password_validation['is_valid']:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Password validation failed: {', '.join(password_validation['errors'])}"
        )

    try:
        user = await engine.directory.create_user(UserRecord(
            username=request.username,
            display_name=request.display_name,
            password_hash=get_password_hash(request.password),
        ))
    except ChatError as e:
        raise from_chat_error(e)

    return _session(user)

@router.post("/login")
async def login(request: LoginRequest, engine=Depends(get_engine)):
    """Exchange username and password for an access token"""
    try:
        user = await engine.directory.find_by_username(request.username)
    except ChatError as e:
        raise from_chat_error(e)

    if not user or not verify_password(request.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    return _session(user)

@router.get("/me")
async def me(current_user: UserRecord = Depends(get_current_user)):
    """Profile of the authenticated user"""
    return current_user.to_public()
