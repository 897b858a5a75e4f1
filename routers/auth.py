from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from backend import redis_backend
from constants import MIN_USERNAME_LENGTH, MIN_PASSWORD_LENGTH
from schemas.users import RegisterRequest, RegisterResponse, LoginRequest, LoginResponse, UserInfo
from logging_config import get_logger

logger = get_logger(__name__)

auth_router = APIRouter(prefix="/api", tags=["auth"])


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def current_user(token: Optional[str] = Depends(bearer_token)) -> str:
    """Resolve the bearer token issued by /api/login to a username."""
    username = await redis_backend.resolve_token(token) if token else None
    if not username:
        raise HTTPException(status_code=401, detail="Not logged in")
    return username


@auth_router.post("/register", response_model=RegisterResponse)
async def register(body: RegisterRequest, request: Request):
    logger.info(f"Registration request from {request.client.host} for {body.username}")
    username = body.username.strip()
    email = body.email.strip().lower()

    if not username or not body.password or not email:
        raise HTTPException(status_code=400, detail="Username, password and email are required")
    if len(username) < MIN_USERNAME_LENGTH:
        raise HTTPException(status_code=400, detail=f"Username must be at least {MIN_USERNAME_LENGTH} characters long")
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if "@" not in email:
        raise HTTPException(status_code=400, detail="Invalid email address")

    try:
        await redis_backend.create_user(username, body.password, email)
    except ValueError as e:
        logger.warning(f"Registration failed for {username}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"User {username} registered")
    return RegisterResponse(message="User registered successfully", user=UserInfo(username=username))


@auth_router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest, request: Request):
    logger.info(f"Login request from {request.client.host} for {body.username}")
    if not body.username or not body.password:
        raise HTTPException(status_code=400, detail="Username and password are required")

    if not await redis_backend.verify_credentials(body.username, body.password):
        logger.warning(f"Login failed for {body.username}")
        raise HTTPException(status_code=401, detail="Invalid username or password")

    token = await redis_backend.issue_token(body.username)
    return LoginResponse(message="Login successful", token=token, user=UserInfo(username=body.username))


@auth_router.post("/logout")
async def logout(token: Optional[str] = Depends(bearer_token)):
    if not token or not await redis_backend.revoke_token(token):
        raise HTTPException(status_code=401, detail="Not logged in")
    return {"message": "Logged out"}
