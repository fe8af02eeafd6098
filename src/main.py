from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from src.config import settings
from src.database import Base, engine
from src.events import EventChannel
from src.exceptions import BookingError
from src.routes import router as routes_router
from src.trips import router as trips_router
from src.bookings import router as bookings_router
from src.payments.router import router as payments_router, booking_payments_router

logger = logging.getLogger(__name__)

def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

configure_logging()

@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("%s started (%s)", settings.PROJECT_NAME, settings.ENVIRONMENT)
    yield

# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="Intercity bus seat booking and ticketing API",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Booking lifecycle events for in-process subscribers
app.state.events = EventChannel()

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ================================
# Error envelope
# ================================
def error_response(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    content = {"success": False, "error": code, "message": message}
    if details:
        content["details"] = jsonable_encoder(details)
    return JSONResponse(content, status_code=status_code)

@app.exception_handler(BookingError)
def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(exc.to_payload(), status_code=exc.status_code)

@app.exception_handler(StarletteHTTPException)
def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))

@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "ValidationError",
        "Request validation failed",
        {"errors": exc.errors()}
    )

@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "InternalServerError", "Internal server error")

# Include routers
app.include_router(
    routes_router,
    prefix=f"{settings.API_V1_STR}/routes",
    tags=["Routes & Fares"]
)

app.include_router(
    trips_router,
    prefix=f"{settings.API_V1_STR}/trips",
    tags=["Trips"]
)

app.include_router(
    bookings_router,
    prefix=f"{settings.API_V1_STR}/bookings",
    tags=["Booking & Ticketing"]
)

app.include_router(
    booking_payments_router,
    prefix=f"{settings.API_V1_STR}/bookings",
    tags=["Payments"]
)

app.include_router(
    payments_router,
    prefix=f"{settings.API_V1_STR}/payments",
    tags=["Payments"]
)

@app.get("/")
def root():
    """Root endpoint"""
    return {
        "message": settings.PROJECT_NAME,
        "version": "1.0.0",
        "docs": "/docs"
    }

@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
