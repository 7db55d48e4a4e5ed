from fastapi import FastAPI, Depends, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from typing import List
import logging
import os
from pathlib import Path

from goalmate.database import engine, get_db, Base
from goalmate import models  # Import all models to register them with Base
from goalmate.schemas import (
    UserCreate, UserResponse,
    GoalCreate, GoalUpdate, GoalResponse,
    GoalShareRequest, GoalShareResponse,
    ProgressUpdate, SubTaskStatusUpdate,
)
from goalmate.auth import verify_api_key, get_current_user_id
from goalmate.exceptions import (
    GoalMateException,
    GoalNotFoundException,
    SubTaskNotFoundException,
    UserNotFoundException,
    NotAuthorizedException,
    GoalLimitReachedException,
    ValidationException,
    ConcurrentUpdateException,
    DatabaseException,
)
from goalmate.services.goal_service import GoalService
from goalmate.services.goal_progress_service import GoalProgressService
from goalmate.services.user_service import UserService
from goalmate.services.notification_service import NotificationSink, LoggingNotificationSink
from goalmate.scheduler import start_scheduler, stop_scheduler
from goalmate.constants import (
    DEFAULT_LOG_DIRECTORY_PROD, DEFAULT_LOG_DIRECTORY_DEV, CORS_ALLOWED_ORIGINS, REMINDERS_ENABLED
)

LOG_DIR = os.getenv("GOALMATE_LOG_DIR", DEFAULT_LOG_DIRECTORY_PROD)
LOG_FILE = os.getenv("GOALMATE_LOG_FILE", "app.log")

# Create log directory if it doesn't exist (for development)
try:
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(LOG_DIR) / LOG_FILE
except PermissionError:
    # Fallback to local directory if no permissions for /var/log
    LOG_DIR = DEFAULT_LOG_DIRECTORY_DEV
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(LOG_DIR) / LOG_FILE

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(log_path),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger("goalmate")

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="GoalMate API",
    description="Social goal tracking with shared and collaborative goals",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS_CODES = [
    (GoalNotFoundException, status.HTTP_404_NOT_FOUND),
    (SubTaskNotFoundException, status.HTTP_404_NOT_FOUND),
    (UserNotFoundException, status.HTTP_404_NOT_FOUND),
    (NotAuthorizedException, status.HTTP_403_FORBIDDEN),
    (GoalLimitReachedException, status.HTTP_403_FORBIDDEN),
    (ValidationException, status.HTTP_400_BAD_REQUEST),
    (ConcurrentUpdateException, status.HTTP_409_CONFLICT),
    (DatabaseException, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def to_http_error(error: GoalMateException) -> HTTPException:
    """Map an application exception onto an HTTP error response"""
    for exc_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, exc_type):
            return HTTPException(status_code=status_code, detail=str(error))
    logger.error(f"Unhandled application error: {error}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server error")


def get_notifier() -> NotificationSink:
    return LoggingNotificationSink()


@app.on_event("startup")
async def startup_event():
    logger.info(f"GoalMate API started. Logging to: {log_path}")
    if REMINDERS_ENABLED:
        start_scheduler()


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down GoalMate API")
    stop_scheduler()


# Health check (no auth required)
@app.get("/")
async def root():
    return {"message": "GoalMate API", "status": "active"}


# ===== USER ENDPOINTS =====

@app.post("/api/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED, dependencies=[Depends(verify_api_key)])
def create_user_endpoint(user: UserCreate, db: Session = Depends(get_db)):
    """Register a user in the directory"""
    try:
        return UserService(db).create_user(user)
    except GoalMateException as e:
        raise to_http_error(e)


@app.get("/api/users/{user_id}", response_model=UserResponse, dependencies=[Depends(verify_api_key)])
def get_user_endpoint(user_id: int, db: Session = Depends(get_db)):
    """Get a user"""
    try:
        return UserService(db).get_user(user_id)
    except GoalMateException as e:
        raise to_http_error(e)


# ===== GOAL ENDPOINTS =====

@app.post("/api/goals", response_model=GoalResponse, status_code=status.HTTP_201_CREATED, dependencies=[Depends(verify_api_key)])
def create_goal_endpoint(
    goal: GoalCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Create a new goal"""
    try:
        return GoalService(db).create_goal(user_id, goal)
    except UserNotFoundException:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    except GoalMateException as e:
        raise to_http_error(e)


@app.get("/api/goals", response_model=List[GoalResponse], dependencies=[Depends(verify_api_key)])
def get_goals_endpoint(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Get goals the user created or participates in"""
    return GoalService(db).get_goals(user_id)


@app.get("/api/goals/{goal_id}", response_model=GoalResponse, dependencies=[Depends(verify_api_key)])
def get_goal_endpoint(
    goal_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Get a specific goal"""
    try:
        return GoalService(db).get_goal(goal_id, user_id)
    except GoalMateException as e:
        raise to_http_error(e)


@app.put("/api/goals/{goal_id}", response_model=GoalResponse, dependencies=[Depends(verify_api_key)])
def update_goal_endpoint(
    goal_id: int,
    goal_update: GoalUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Update a goal"""
    try:
        return GoalService(db).update_goal(goal_id, user_id, goal_update)
    except GoalMateException as e:
        raise to_http_error(e)


@app.delete("/api/goals/{goal_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(verify_api_key)])
def delete_goal_endpoint(
    goal_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Delete a goal"""
    try:
        GoalService(db).delete_goal(goal_id, user_id)
    except GoalMateException as e:
        raise to_http_error(e)


@app.post("/api/goals/{goal_id}/share", response_model=GoalShareResponse, dependencies=[Depends(verify_api_key)])
def share_goal_endpoint(
    goal_id: int,
    share: GoalShareRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Share a goal with friends"""
    try:
        results = GoalService(db).share_goal(goal_id, user_id, share)
    except GoalMateException as e:
        raise to_http_error(e)
    return {"goal_id": goal_id, "share_results": results}


@app.post("/api/goals/{goal_id}/leave", dependencies=[Depends(verify_api_key)])
def leave_goal_endpoint(
    goal_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Leave a shared goal"""
    try:
        GoalService(db).leave_goal(goal_id, user_id)
    except GoalMateException as e:
        raise to_http_error(e)
    return {"message": "Successfully left the shared goal"}


# ===== PROGRESS ENDPOINTS =====

@app.post("/api/goals/{goal_id}/progress", response_model=GoalResponse, dependencies=[Depends(verify_api_key)])
def record_progress_endpoint(
    goal_id: int,
    progress: ProgressUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier)
):
    """Record progress on a goal or one of its sub-tasks"""
    try:
        return GoalProgressService(db, notifier).record_progress(goal_id, user_id, progress)
    except GoalMateException as e:
        raise to_http_error(e)


@app.put(
    "/api/goals/{goal_id}/subtasks/{sub_task_id}/status",
    response_model=GoalResponse,
    dependencies=[Depends(verify_api_key)]
)
def set_subtask_status_endpoint(
    goal_id: int,
    sub_task_id: int,
    update: SubTaskStatusUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier)
):
    """Set the status of a sub-task"""
    try:
        return GoalProgressService(db, notifier).set_subtask_status(
            goal_id, sub_task_id, user_id, update.status
        )
    except GoalMateException as e:
        raise to_http_error(e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("goalmate.main:app", host="0.0.0.0", port=8000, reload=False)
