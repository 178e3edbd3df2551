from fastapi import FastAPI
from loguru import logger

from db import create_db_and_tables
from errors import register_exception_handlers
from log_config import configure_logging
from routers import auth, resources

configure_logging()

app = FastAPI(title="ResourceShare")
register_exception_handlers(app)


@app.on_event("startup")
def on_startup() -> None:
    create_db_and_tables()
    logger.info("ResourceShare started")


@app.get("/")
def read_root():
    return {"app": "ResourceShare", "status": "ok"}


app.include_router(auth.router, prefix="/auth")
app.include_router(resources.router, prefix="/resources")
