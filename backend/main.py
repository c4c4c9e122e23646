from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os

from database import Base, engine
from errors import TaskHubError
from auth.routes import router as auth_router
from routes.users import router as users_router
from routes.projects import router as projects_router
from routes.tasks import router as tasks_router
from routes.activity_logs import router as activity_logs_router

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task Hub API",
    description="Multi-tenant projects, tasks and subtasks with role-based access and an activity trail",
    version="1.0.0"
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TaskHubError)
async def task_hub_error_handler(request: Request, exc: TaskHubError):
    """Map domain errors to HTTP responses shaped like HTTPException."""
    logger.debug(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.on_event("startup")
def create_tables():
    # Development convenience; production schemas are managed outside the app
    if os.environ.get("AUTO_CREATE_TABLES", "true").lower() == "true":
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ensured")


app.include_router(auth_router)
app.include_router(users_router)
app.include_router(projects_router)
app.include_router(tasks_router)
app.include_router(activity_logs_router)


@app.get("/health")
def health_check():
    return {"status": "healthy"}
