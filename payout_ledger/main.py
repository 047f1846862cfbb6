from contextlib import asynccontextmanager

from fastapi import FastAPI

from payout_ledger.api.v1.api import api_router
from payout_ledger.core.config import settings
from payout_ledger.core.logging_config import setup_logging
from payout_ledger.db.mongo import close_mongo_connection, connect_to_mongo

setup_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await connect_to_mongo()
    yield
    await close_mongo_connection()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan
)


@app.get("/")
async def root():
    return {"message": f"{settings.PROJECT_NAME} is running"}


@app.get("/health")
async def health():
    return {"status": "ok", "environment": settings.ENVIRONMENT}


app.include_router(api_router, prefix=settings.API_V1_STR)
