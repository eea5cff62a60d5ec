import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import LOG_LEVEL
from .database import create_db_and_tables
from .dependencies import shutdown_audit_logger
from .errors import HuntError
from .routers import challenges, waypoints

# Configure logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Scavenger Hunt")

origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HuntError)
async def hunt_error_handler(request: Request, exc: HuntError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.payload)


@app.get("/")
async def root():
    return {"message": "Scavenger Hunt API"}

app.include_router(waypoints.router)
app.include_router(challenges.router)

@app.on_event("startup")
def on_startup():
    create_db_and_tables()


@app.on_event("shutdown")
def on_shutdown():
    shutdown_audit_logger()
