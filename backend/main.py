from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.config import CORS_ALLOW_ORIGINS, LOG_JSON, LOG_LEVEL
from backend.logging import get_logger, setup_logging
from backend.routers import admin, attendance, auth, core, hallpass, students
from database.db import create_tables

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging(json_output=LOG_JSON, log_level=LOG_LEVEL)
    create_tables()
    log.info("startup_complete")
    yield


app = FastAPI(title="Hall Pass API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(core.router)
app.include_router(auth.router)
app.include_router(students.router)
app.include_router(attendance.router)
app.include_router(hallpass.router)
app.include_router(admin.router)
