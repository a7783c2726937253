import uvicorn
from datetime import datetime, timezone
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from api.routes.auth import router as auth_router
from api.routes.books import router as books_router
from api.routes.categories import router as categories_router
from api.routes.expenses import router as expenses_router
from api.routes.reports import router as reports_router
from api.routes.ai import router as ai_router

from core.config import FRONTEND_URL, LOG_FILE
from core.database import init_db
from contextlib import asynccontextmanager
from loguru import logger

from services.limiting import limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware


logger.add(LOG_FILE, serialize=True)


@asynccontextmanager
async def lifespan(app: FastAPI):

    # Initialize tables (Alembic recommended but this works)
    await init_db()
    logger.info("Database ready")

    yield     # <- FastAPI is now serving requests

    logger.info("Shutting down")


# FastAPI app
app = FastAPI(
    title="Manage My Expenses API (Async)",
    lifespan=lifespan,
)


# ---------- SlowAPI -------------
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

# ---------- CORS ----------
origins = [FRONTEND_URL]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,         # cookie auth
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request, exc):
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests, slow down"}
    )


# ROUTES -----------------------
@app.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "message": "Manage My Expenses API is running",
    }

app.include_router(auth_router)
app.include_router(books_router)
app.include_router(categories_router)
app.include_router(expenses_router)
app.include_router(reports_router)
app.include_router(ai_router)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="debug"
    )
