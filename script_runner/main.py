import logging

from script_runner.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.debug.log_level.upper(), logging.INFO),
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from script_runner.controllers.health import router as health_router
from script_runner.controllers.scripts import router as scripts_router
from script_runner.errors import register_exception_handlers
from script_runner.lifespan import lifespan
from script_runner.middleware import HTTPLogMiddleware

app = FastAPI(title="Script Runner", version="1.0.0", lifespan=lifespan)
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins,
    allow_origin_regex=settings.cors.origins_regex or None,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.debug.request:
    logging.getLogger("script_runner.http").setLevel(logging.DEBUG)
    app.add_middleware(HTTPLogMiddleware)

if settings.debug.sandbox:
    logging.getLogger("script_runner.sandbox").setLevel(logging.DEBUG)

if settings.features.metrics:
    Instrumentator().instrument(app).expose(app)

app.include_router(health_router)
app.include_router(scripts_router)
