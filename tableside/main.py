# tableside/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tableside.middleware import RequestIdMiddleware
from tableside.db import Base, engine
from tableside.config import settings
from tableside.errors import AppError, app_error_handler
import tableside.models  # noqa: F401  (registers tables)

from tableside.routers import admin, billing, dining, kot, orders, payments

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Tableside API", version="0.1.0")

@app.on_event("startup")
def init_db():
    Base.metadata.create_all(bind=engine)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(AppError, app_error_handler)

app.include_router(dining.router)
app.include_router(orders.router)
app.include_router(kot.router)
app.include_router(billing.router)
app.include_router(payments.router)
app.include_router(admin.router)

@app.get("/healthz")
def healthz():
    return {"ok": True}
