"""API Dependencies - Authentication"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from domain.auth import User, UserInDB
from domain.enums import AccountRole
from infrastructure.config import get_settings
from infrastructure.repositories.in_memory_repositories import InMemoryUserRepository
from infrastructure.security import decode_access_token, get_password_hash, verify_password
from api.schemas import TokenData

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

# Account store; a real deployment would back this with the user database
user_repo = InMemoryUserRepository()


async def _ensure_seed_admin() -> None:
    """Create the bootstrap super admin on first use (bcrypt hashing is slow)"""
    settings = get_settings()
    if await user_repo.find_by_username(settings.SEED_ADMIN_USERNAME) is not None:
        return
    await user_repo.save(UserInDB(
        username=settings.SEED_ADMIN_USERNAME,
        full_name="Admin User",
        email="admin@example.com",
        role=AccountRole.SUPER_ADMIN,
        hashed_password=get_password_hash(settings.SEED_ADMIN_PASSWORD),
    ))
    logger.info("Seeded super admin account %s", settings.SEED_ADMIN_USERNAME)


async def get_user(username: str) -> Optional[UserInDB]:
    await _ensure_seed_admin()
    return await user_repo.find_by_username(username)


async def authenticate_user(username: str, password: str) -> Optional[UserInDB]:
    user = await get_user(username)
    if user is None or not verify_password(password, user.hashed_password):
        return None
    return user


async def get_current_user(token: str = Depends(oauth2_scheme)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        username: str = payload.get("sub")
        if username is None:
            raise credentials_exception
        token_data = TokenData(username=username)
    except JWTError:
        raise credentials_exception

    user = await get_user(token_data.username)
    if user is None:
        raise credentials_exception
    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)):
    if current_user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user


async def require_staff(current_user: User = Depends(get_current_active_user)):
    if not current_user.is_staff:
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user
