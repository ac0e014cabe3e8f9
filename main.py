from fastapi import APIRouter, FastAPI, Request, Response, Depends, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import logging
import structlog
import time
from contextlib import asynccontextmanager

from config import get_settings
from exceptions import BudgetError
from models import (
    Account,
    AccountCreateRequest,
    AccountUpdateRequest,
    ErrorResponse,
    HealthResponse,
    Transaction,
    TransactionCreateRequest,
)
from repositories import get_account_repository
from services import BudgetService, get_budget_service

settings = get_settings()

# Configure structured logging
logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Rate limiting
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
write_limit = f"{settings.rate_limit_per_minute}/minute"


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Budget API", version=settings.app_version, prefix=settings.api_prefix)
    yield
    logger.info("Shutting down Budget API")


app = FastAPI(
    title=settings.app_name,
    description=settings.app_description,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Cross-origin access from loopback and localhost only
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=settings.allowed_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        client_ip=request.client.host if request.client else None
    )

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time=round(process_time, 4)
    )

    return response


# Dependency injection
def get_service(account_repo=Depends(get_account_repository)) -> BudgetService:
    return get_budget_service(account_repo)


router = APIRouter(prefix=settings.api_prefix)

error_responses = {
    400: {"model": ErrorResponse, "description": "Missing or invalid parameters"},
    404: {"model": ErrorResponse, "description": "Account or transaction not found"},
    409: {"model": ErrorResponse, "description": "Account or transaction already exists"},
}


@router.get("/", response_class=PlainTextResponse, summary="Server info")
async def server_info():
    return f"{settings.app_description} v{settings.app_version}"


@router.get("/health", response_model=HealthResponse, summary="Health Check")
async def health_check(account_repo=Depends(get_account_repository)):
    return HealthResponse(
        status="healthy",
        accounts_count=await account_repo.get_accounts_count(),
        transactions_count=await account_repo.get_transactions_count(),
    )


@router.post(
    "/accounts",
    response_model=Account,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account",
    responses={k: error_responses[k] for k in (400, 409)},
)
@limiter.limit(write_limit)
async def create_account(
    request: Request,
    payload: AccountCreateRequest,
    service: BudgetService = Depends(get_service)
):
    return await service.create_account(payload)


@router.get(
    "/accounts/{user}",
    response_model=Account,
    summary="Get all data for an account",
    responses={404: error_responses[404]},
)
async def get_account(user: str, service: BudgetService = Depends(get_service)):
    return await service.get_account(user)


@router.put(
    "/accounts/{user}",
    response_model=Account,
    summary="Update account currency or description",
    responses={k: error_responses[k] for k in (400, 404)},
)
@limiter.limit(write_limit)
async def update_account(
    request: Request,
    user: str,
    payload: AccountUpdateRequest,
    service: BudgetService = Depends(get_service)
):
    return await service.update_account(user, payload)


@router.delete(
    "/accounts/{user}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove an account",
    responses={404: error_responses[404]},
)
@limiter.limit(write_limit)
async def delete_account(
    request: Request,
    user: str,
    service: BudgetService = Depends(get_service)
):
    await service.delete_account(user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/accounts/{user}/transactions",
    response_model=Transaction,
    status_code=status.HTTP_201_CREATED,
    summary="Add a transaction to an account",
    responses=error_responses,
)
@limiter.limit(write_limit)
async def add_transaction(
    request: Request,
    user: str,
    payload: TransactionCreateRequest,
    service: BudgetService = Depends(get_service)
):
    return await service.add_transaction(user, payload)


@router.delete(
    "/accounts/{user}/transactions/{transaction_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a transaction from an account",
    responses={404: error_responses[404]},
)
@limiter.limit(write_limit)
async def remove_transaction(
    request: Request,
    user: str,
    transaction_id: str,
    service: BudgetService = Depends(get_service)
):
    await service.remove_transaction(user, transaction_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


app.include_router(router)


# Exception handlers
@app.exception_handler(BudgetError)
async def budget_error_handler(request: Request, exc: BudgetError):
    logger.warning(
        "Request rejected",
        method=request.method,
        url=str(request.url),
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.message).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("Invalid request body", url=str(request.url), errors=str(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error="Invalid request body").model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail)).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="Internal server error").model_dump(),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
