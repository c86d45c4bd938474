# main.py (full, lifespan-based)
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from tortoise import Tortoise

from routers import (
    auth, users,
    panels, panel_events,
    billing, months, rates,
    admin_tasks,
)
from services import config
from services.errors import BillingError
from services.seeder import seed_if_empty

logger = logging.getLogger("uvicorn")
logger.setLevel(config.LOG_LEVEL)
logging.getLogger("services").setLevel(config.LOG_LEVEL)

# ----- lifespan -----
@asynccontextmanager
async def lifespan(app: FastAPI):
    # 1) DB init
    await Tortoise.init(
        db_url=config.DB_URL,
        modules={"models": ["models"]},
    )
    await Tortoise.generate_schemas()

    # 2) Seeds (admin user, yearly rates)
    await seed_if_empty(logger=logger.info)

    try:
        yield
    finally:
        await Tortoise.close_connections()

# ----- app & routers -----
app = FastAPI(lifespan=lifespan, title="PIV Manager API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "X-Total-Count"],
)

@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    if exc.status_code >= 500:
        logger.error(f"[{request.method} {request.url.path}] {exc.message}")
    else:
        logger.info(f"[{request.method} {request.url.path}] {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

app.include_router(auth.router)
app.include_router(users.router)

app.include_router(panels.router)
app.include_router(panel_events.router)

app.include_router(billing.router)
app.include_router(months.router)
app.include_router(rates.router)

app.include_router(admin_tasks.router)

for route in app.routes:
    if isinstance(route, APIRoute):
        logger.debug("%s -> %s", list(route.methods), route.path)
