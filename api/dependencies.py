from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt
from core.config import COOKIE_NAME, JWT_SECRET, ALGORITHM
from db.models import User
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import get_db
from sqlalchemy import select


def _read_token(request: Request) -> str | None:
    auth = request.headers.get("authorization")
    if auth and auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip()

    return request.cookies.get(COOKIE_NAME)


async def _user_from_token(token: str | None, db: AsyncSession) -> User | None:
    if not token:
        return None

    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM])
        user_id = str(payload["sub"])
    except (JWTError, KeyError):
        return None

    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalars().first()


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:

    user = await _user_from_token(_read_token(request), db)

    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized - Please log in first")

    return user


async def get_optional_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """Same as get_current_user, but anonymous callers get None instead of a 401."""
    return await _user_from_token(_read_token(request), db)
