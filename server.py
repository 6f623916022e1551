from fastapi import FastAPI, APIRouter, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware
import logging

from farfield.core.config import settings
from farfield.core.errors import MarketplaceError
from farfield.core.responses import error_response
from farfield.db.session import close_mongo_connection, ensure_indexes, get_db
from farfield.routers import notifications, products, purchases, ratings, users

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Farfield Marketplace API")

api_router = APIRouter(prefix="/api")
api_router.include_router(purchases.router)
api_router.include_router(products.router)
api_router.include_router(ratings.router)
api_router.include_router(users.router)
api_router.include_router(notifications.router)

# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return error_response(exc.message, exc.status_code, details=exc.details)

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(str(exc.detail), exc.status_code)

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    validation_errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return error_response("Validation failed", 400, validation_errors)

@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {str(exc)}")
    return error_response("An unexpected error occurred", 500)

@app.on_event("startup")
async def create_indexes():
    await ensure_indexes(get_db())

@app.on_event("shutdown")
async def shutdown_db_client():
    close_mongo_connection()
