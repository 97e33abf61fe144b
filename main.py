import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from db import create_db_and_tables
from routers import auth, categories, items, notifications, requests, users
from routers.common import API_VERSION

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Inventory Requests")

# Permissive CORS; preflight OPTIONS is answered the same way on every endpoint.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    create_db_and_tables()


@app.middleware("http")
async def add_api_version(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-API-Version"] = API_VERSION
    return response


@app.exception_handler(SQLAlchemyError)
async def database_error(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Database error", "error": exc.__class__.__name__},
    )


@app.get("/")
def read_root():
    return {"name": app.title, "api_version": API_VERSION}


app.include_router(auth.router, prefix="/api/auth")
app.include_router(users.router, prefix="/api/users")
app.include_router(categories.router, prefix="/api/categories")
app.include_router(items.router, prefix="/api/inventory")
app.include_router(requests.router, prefix="/api/item-requests")
app.include_router(notifications.router, prefix="/api/notifications")
