from fastapi import FastAPI, Depends, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
import logging
from pathlib import Path

from fitquest import config
from fitquest.database import engine, get_db, Base
from fitquest import models  # Import all models to register them with Base
from fitquest.schemas import (
    TaskCreate, TaskResponse, TaskCompletionRequest, StreakInfo,
    ProgressContract, EventResult, ReverseRequest,
    LevelInfo, XpHistoryEntry, BodyweightCreate,
    AchievementStatus,
)
from fitquest.auth import verify_api_key, get_user_id
from fitquest.exceptions import FitQuestException
from fitquest.services.task_service import TaskService
from fitquest.services.progress_service import ProgressService
from fitquest.services.achievement_service import AchievementService
from fitquest.services.event_coordinator import EventCoordinator
from fitquest.services.scheduler_service import start_scheduler, stop_scheduler
from fitquest.constants import (
    DEFAULT_LOG_DIRECTORY_DEV,
    CONTRACT_SOURCE_WEIGHT,
    CONTRACT_SOURCE_SYSTEM,
    ERR_VALIDATION,
    ERR_NOT_FOUND,
    ERR_REVERSAL_FAILED,
)

# Create log directory if it doesn't exist (for development)
try:
    Path(config.LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(config.LOG_DIR) / config.LOG_FILE
except PermissionError:
    # Fallback to local directory if no permissions for /var/log
    Path(DEFAULT_LOG_DIRECTORY_DEV).mkdir(parents=True, exist_ok=True)
    log_path = Path(DEFAULT_LOG_DIRECTORY_DEV) / config.LOG_FILE

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(log_path),
        logging.StreamHandler()  # Also log to console
    ]
)

logger = logging.getLogger("fitquest")

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="FitQuest Progress API",
    description="XP, levels, streaks and achievements for a fitness tracker",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    ERR_VALIDATION: status.HTTP_400_BAD_REQUEST,
    ERR_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ERR_REVERSAL_FAILED: status.HTTP_409_CONFLICT,
}


def _http_error(e: FitQuestException) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(e.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=str(e)
    )


def _event_response(result: EventResult):
    """Failed results keep their body but get the matching HTTP status"""
    if result.success:
        return result
    return JSONResponse(
        status_code=ERROR_STATUS.get(result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=result.model_dump(mode="json", by_alias=True)
    )


# Startup event
@app.on_event("startup")
async def startup_event():
    logger.info(f"FitQuest API started. Logging to: {log_path}")
    start_scheduler()

# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down FitQuest API")
    stop_scheduler()

# Health check (no auth required)
@app.get("/")
async def root():
    return {"message": "FitQuest Progress API", "status": "active"}

# Events
@app.post("/api/events", response_model=EventResult, dependencies=[Depends(verify_api_key)])
async def process_event(
    contract: ProgressContract,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Apply a progress contract"""
    if contract.user_id != user_id:
        raise HTTPException(status_code=403, detail="Contract user does not match caller")
    return _event_response(EventCoordinator(db).process(contract))

@app.get("/api/events/stats", dependencies=[Depends(verify_api_key)])
async def get_event_stats(user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Event counts and net XP"""
    return EventCoordinator(db).get_event_stats(user_id)

@app.get("/api/events/{token}/can-reverse", dependencies=[Depends(verify_api_key)])
async def can_reverse_event(token: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Check whether an event can still be reversed"""
    return EventCoordinator(db).can_reverse(token, user_id)

@app.post("/api/events/{token}/reverse", response_model=EventResult, dependencies=[Depends(verify_api_key)])
async def reverse_event(
    token: str,
    request: Optional[ReverseRequest] = None,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Reverse a recorded event"""
    request = request or ReverseRequest()
    result = EventCoordinator(db).reverse(user_id, token, request.reason, request.token)
    return _event_response(result)

# Progress
@app.get("/api/progress", response_model=LevelInfo, dependencies=[Depends(verify_api_key)])
async def get_progress(user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Get level information (creates the ledger on first access)"""
    service = ProgressService(db)
    progress = service.get_or_create(user_id)
    db.commit()
    return service.get_level_info(progress)

@app.get("/api/progress/history", response_model=List[XpHistoryEntry], dependencies=[Depends(verify_api_key)])
async def get_xp_history(limit: int = 50, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Get recent XP history, newest first"""
    service = ProgressService(db)
    progress = service.get_or_create(user_id)
    db.commit()
    return service.get_xp_history(progress, limit)

@app.get("/api/progress/weight", dependencies=[Depends(verify_api_key)])
async def get_bodyweight(user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Get bodyweight entries, newest first"""
    service = ProgressService(db)
    progress = service.get_or_create(user_id)
    db.commit()
    return service.get_bodyweight_history(progress)

@app.post("/api/progress/weight", response_model=EventResult, dependencies=[Depends(verify_api_key)])
async def log_bodyweight(
    entry: BodyweightCreate,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Log bodyweight (awards XP)"""
    coordinator = EventCoordinator(db)
    contract = ProgressContract(
        token=coordinator.generate_token(),
        user_id=user_id,
        source=CONTRACT_SOURCE_WEIGHT,
        action="weight_logged",
        metadata={
            "value": entry.value,
            "unit": entry.unit,
            "date": entry.date.isoformat() if entry.date else None,
        }
    )
    return _event_response(coordinator.process(contract))

@app.delete("/api/progress/weight/{entry_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(verify_api_key)])
async def delete_bodyweight(entry_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Delete a bodyweight entry"""
    service = ProgressService(db)
    try:
        service.remove_bodyweight(service.get_or_create(user_id), entry_id)
    except FitQuestException as e:
        db.rollback()
        raise _http_error(e)
    db.commit()

# Achievements
@app.get("/api/achievements", response_model=List[AchievementStatus], dependencies=[Depends(verify_api_key)])
async def get_achievements(user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Get the achievement catalog with the user's status"""
    service = AchievementService(db)
    progress = service.progress_service.get_or_create(user_id)
    db.commit()
    return service.get_all_with_status(progress)

@app.post("/api/achievements/{achievement_id}/claim", response_model=EventResult, dependencies=[Depends(verify_api_key)])
async def claim_achievement(achievement_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Claim a pending achievement"""
    coordinator = EventCoordinator(db)
    contract = ProgressContract(
        token=coordinator.generate_token(),
        user_id=user_id,
        source=CONTRACT_SOURCE_SYSTEM,
        action="achievement_claimed",
        metadata={"achievement_id": achievement_id}
    )
    return _event_response(coordinator.process(contract))

# Tasks
@app.get("/api/tasks", response_model=List[TaskResponse], dependencies=[Depends(verify_api_key)])
async def get_tasks(
    skip: int = 0,
    limit: int = 100,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Get all tasks"""
    return TaskService(db).get_tasks(user_id, skip, limit)

@app.post("/api/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED, dependencies=[Depends(verify_api_key)])
async def create_task(task: TaskCreate, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Create a new task"""
    try:
        return TaskService(db).create_task(user_id, task)
    except FitQuestException as e:
        raise _http_error(e)

@app.get("/api/tasks/due", response_model=List[TaskResponse], dependencies=[Depends(verify_api_key)])
async def get_due_tasks(
    day: Optional[date] = None,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Get tasks due on a date (default today)"""
    return TaskService(db).get_due_tasks(user_id, day)

@app.get("/api/tasks/{task_id}", response_model=TaskResponse, dependencies=[Depends(verify_api_key)])
async def get_task(task_id: int, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Get a specific task"""
    try:
        return TaskService(db).get_task(user_id, task_id)
    except FitQuestException as e:
        raise _http_error(e)

@app.delete("/api/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(verify_api_key)])
async def delete_task(task_id: int, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Delete a task"""
    try:
        TaskService(db).delete_task(user_id, task_id)
    except FitQuestException as e:
        raise _http_error(e)

@app.post("/api/tasks/{task_id}/complete", response_model=EventResult, dependencies=[Depends(verify_api_key)])
async def complete_task(
    task_id: int,
    request: Optional[TaskCompletionRequest] = None,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Complete a task on a date (default today) and award XP"""
    request = request or TaskCompletionRequest()
    try:
        result = TaskService(db).complete_task(user_id, task_id, request.completion_date, request.token)
    except FitQuestException as e:
        db.rollback()
        raise _http_error(e)
    return _event_response(result)

@app.post("/api/tasks/{task_id}/uncomplete", response_model=EventResult, dependencies=[Depends(verify_api_key)])
async def uncomplete_task(
    task_id: int,
    request: Optional[TaskCompletionRequest] = None,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db)
):
    """Remove a completion and reverse its XP"""
    request = request or TaskCompletionRequest()
    try:
        result = TaskService(db).uncomplete_task(user_id, task_id, request.completion_date, request.token)
    except FitQuestException as e:
        db.rollback()
        raise _http_error(e)
    return _event_response(result)

@app.get("/api/tasks/{task_id}/streak", response_model=StreakInfo, dependencies=[Depends(verify_api_key)])
async def get_task_streak(task_id: int, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Get streak information for a task"""
    try:
        return TaskService(db).get_streak_info(user_id, task_id)
    except FitQuestException as e:
        raise _http_error(e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("fitquest.main:app", host="0.0.0.0", port=8000, reload=False)
