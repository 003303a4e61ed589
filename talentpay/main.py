from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from talentpay.api.endpoints import admin, payments, verification
from talentpay.config import settings
from talentpay.core.exceptions import PaymentError
from talentpay.core.logging import app_logger
from talentpay.core.middleware import ClaimsInjectionMiddleware, RequestLoggingMiddleware
from talentpay.database import init_models
from talentpay.services.side_effects import SideEffectQueue


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    app.state.side_effects = SideEffectQueue.from_settings(settings)
    app_logger.info(f"{settings.PROJECT_NAME} {settings.VERSION} started")
    yield
    await app.state.side_effects.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add claims injection middleware (decodes the bearer JWT before routing)
app.add_middleware(ClaimsInjectionMiddleware)

# Add request logging middleware (outermost; reads the injected claims after the call)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    if exc.status_code >= 500:
        app_logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    field = ".".join(str(part) for part in errors[0]["loc"][1:]) if errors else ""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "message": "Invalid request body",
            "field": field,
        },
    )


app.include_router(payments.router, tags=["payments"])
app.include_router(verification.router, tags=["verification"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])


@app.get("/")
async def root():
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }


@app.get("/health")
async def health_check():
    return {"status": "OK"}
