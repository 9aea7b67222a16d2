# app/main.py
import uvicorn
import os
import logging
import uuid
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from app.core.config import settings
from app.core.database import engine, Base
from app.core.errors import ErrorCode, ServiceError, error_response
from app.core.jupiter import JupiterClient
from app.core.solana import SolanaClient
from app.api.v1.api import api_router
# Register every mapped table on Base.metadata
from app.models import goal, internal_transfer, transaction  # noqa: F401

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

async def create_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    openapi_tags=[
        {"name": "goals", "description": "Accumulation goals and their ledger"},
        {"name": "invest", "description": "Two-phase goal investments (prepare / execute)"},
        {"name": "swap", "description": "Stateless quote / execute swaps"},
        {"name": "internal", "description": "Admin-only tooling"},
    ],
)

# CORS Configuration
origins = [
    settings.FRONTEND_URL,
    "http://localhost:3000",  # Local development
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response

def _request_id(request: Request):
    return getattr(request.state, "request_id", None)

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code in (401, 403):
        code = ErrorCode.AUTH_ERROR
    elif exc.status_code < 500:
        code = ErrorCode.VALIDATION_ERROR
    else:
        code = ErrorCode.INTERNAL_ERROR
    error = ServiceError(code=code, message=str(exc.detail), status_code=exc.status_code)
    response = error_response(error, _request_id(request))
    if exc.headers:
        response.headers.update(exc.headers)
    return response

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    error = ServiceError(
        code=ErrorCode.VALIDATION_ERROR,
        message="; ".join(problems) or "Invalid request",
    )
    return error_response(error, _request_id(request))

# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Anything unhandled is logged with its trace and reported without detail"""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    error = ServiceError(code=ErrorCode.INTERNAL_ERROR, message="Internal server error")
    return error_response(error, _request_id(request))

@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information"""
    return {
        "message": f"{settings.APP_NAME} is running!",
        "version": settings.VERSION,
    }

@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "network": settings.SOLANA_NETWORK,
    }

app.include_router(api_router, prefix="/api/v1")

@app.on_event("startup")
async def on_startup():
    """Create network clients (and tables, outside of migrated deployments)"""
    app.state.solana = SolanaClient(
        settings.SOLANA_RPC_URL,
        commitment=settings.SOLANA_COMMITMENT,
        timeout=settings.RPC_TIMEOUT_SECONDS,
    )
    app.state.jupiter = JupiterClient(
        settings.JUPITER_API_URL,
        api_key=settings.JUPITER_API_KEY,
        timeout=settings.RPC_TIMEOUT_SECONDS,
    )
    await app.state.solana.start()
    await app.state.jupiter.start()
    logger.info(f"Solana RPC: {settings.SOLANA_RPC_URL} ({settings.SOLANA_NETWORK}), Jupiter: {settings.JUPITER_API_URL}")

    if settings.AUTO_CREATE_TABLES:
        await create_db_and_tables()
        logger.info("Database tables created")

@app.on_event("shutdown")
async def on_shutdown():
    await app.state.solana.close()
    await app.state.jupiter.close()
    await engine.dispose()
    logger.info("Network clients closed")

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("app.main:app", host="0.0.0.0", port=port, reload=False)
