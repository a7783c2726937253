from fastapi import APIRouter, HTTPException, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from core.security import pwd_context
from datetime import datetime, timedelta, timezone
from services.limiting import limiter
from sqlalchemy import select
from jose import jwt

from core.config import JWT_SECRET, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, COOKIE_NAME, LOGIN_RATE_LIMIT
from core.database import get_db
from db.models import User
from api.dependencies import get_current_user
from api.schemas.user import UserCreate, UserLogin, UserRead, Token


router = APIRouter(prefix="/auth", tags=["Auth"])


# ---------- routes ----------
@router.post("/signup", response_model=Token, status_code=201)
async def signup(user: UserCreate, response: Response, db: AsyncSession = Depends(get_db)):
    # 1. uniqueness check
    existing = await db.execute(select(User).where(User.email == user.email))
    if existing.scalars().first():
        raise HTTPException(status_code=400, detail="Email already registered")

    # 2. create user row
    new_user = User(
        name=user.name,
        email=user.email,
        password_hash=_hash_password(user.password),
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)

    # 3. create JWT
    access_token, expires_at = _create_access_token(data={"sub": new_user.id})
    _set_auth_cookie(response, access_token, expires_at)

    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/login", response_model=Token)
@limiter.limit(LOGIN_RATE_LIMIT)
async def login(request: Request, response: Response, user: UserLogin, db: AsyncSession = Depends(get_db)):
    stmt = select(User).where(User.email == user.email)
    result = await db.execute(stmt)
    db_user = result.scalar_one_or_none()

    if not db_user:
        raise HTTPException(status_code=401, detail="No account found with this email address")

    if not db_user.password_hash:
        raise HTTPException(status_code=401, detail="Account setup incomplete. Please contact support.")

    if not _verify_password(user.password, db_user.password_hash):
        raise HTTPException(status_code=401, detail="Incorrect password")

    access_token, expires_at = _create_access_token(data={"sub": db_user.id})
    _set_auth_cookie(response, access_token, expires_at)

    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/me", response_model=UserRead)
async def me(user: User = Depends(get_current_user)):
    return user


# ---------- helpers ----------
def _hash_password(password: str) -> str:
    password = password.encode("utf-8")[:72].decode("utf-8", errors="ignore")
    return pwd_context.hash(password)

def _verify_password(plain: str, hashed: str) -> bool:
    plain = plain.encode("utf-8")[:72].decode("utf-8", errors="ignore")
    return pwd_context.verify(plain, hashed)

def _create_access_token(data: dict, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    token = jwt.encode(to_encode, JWT_SECRET, algorithm=ALGORITHM)
    return token, expire   # <-- return BOTH token and its expiry

def _set_auth_cookie(response: Response, token: str, expires_at: datetime) -> None:
    response.set_cookie(
        key=COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        expires=expires_at,
    )
