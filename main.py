import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

import progress_engine as engine
from config import CRON_SECRET, DATABASE_NAME, DATABASE_URL, LOG_LEVEL, PORT
from database import ConcurrentUpdateError, StoreError, db, default_store
from progress_service import ProgressService
from schemas import Category, GaugeView, HonestyMetrics, MilestoneView, Mood, ProgressRecord

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Teyra Progress API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_service = ProgressService(default_store())


def get_service() -> ProgressService:
    return _service


# ----------------------
# Models (requests)
# ----------------------

class MoodRequest(BaseModel):
    mood: Mood


# ----------------------
# Helpers
# ----------------------

def _progress_payload(record: ProgressRecord, milestone: MilestoneView) -> dict:
    return {
        "user_id": record.user_id,
        "all_time_completed": record.all_time_completed,
        "daily_completed_tasks": record.daily_completed_tasks,
        "daily_mood_checks": record.daily_mood_checks,
        "daily_ai_splits": record.daily_ai_splits,
        "daily_parses": record.daily_parses,
        "mood": record.current_mood,
        "max_value": milestone.max_value,
        "display_value": milestone.display_value,
        "current_milestone": milestone.milestone_index,
        "last_reset_date": record.last_reset_date,
        "is_pro": record.is_pro,
    }


def _call(fn, *args):
    try:
        return fn(*args)
    except ValueError as e:
        raise HTTPException(400, str(e))
    except ConcurrentUpdateError as e:
        raise HTTPException(409, str(e))
    except StoreError as e:
        logger.error("Store call failed: %s", e)
        raise HTTPException(503, "Progress store unavailable")


# ----------------------
# Health
# ----------------------

@app.get("/")
def read_root():
    return {"message": "Teyra progress backend running"}


@app.get("/test")
def test_database(service: ProgressService = Depends(get_service)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if DATABASE_NAME else "❌ Not Set",
        "store": type(service.store).__name__,
        "collections": [],
    }
    if db is not None:
        try:
            response["collections"] = db.list_collection_names()
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:80]}"
    return response


# ----------------------
# Progress & tasks
# ----------------------

@app.get("/progress/{user_id}")
def get_progress(user_id: str, view: GaugeView = "lifetime", service: ProgressService = Depends(get_service)):
    record, milestone = _call(service.get_progress, user_id, view)
    return _progress_payload(record, milestone)


@app.post("/progress/{user_id}/tasks/complete")
def complete_task(user_id: str, service: ProgressService = Depends(get_service)):
    result = _call(service.complete_task, user_id)
    payload = _progress_payload(result.record, result.milestone)
    payload["reached_new_milestone"] = result.reached_new_milestone
    return payload


@app.post("/progress/{user_id}/tasks/uncomplete")
def uncomplete_task(user_id: str, service: ProgressService = Depends(get_service)):
    result = _call(service.uncomplete_task, user_id)
    return _progress_payload(result.record, result.milestone)


# ----------------------
# Mood
# ----------------------

@app.get("/mood/{user_id}")
def get_mood(user_id: str, service: ProgressService = Depends(get_service)):
    return {"mood": _call(service.get_mood, user_id)}


@app.post("/mood/{user_id}")
def submit_mood(user_id: str, payload: MoodRequest, service: ProgressService = Depends(get_service)):
    result = _call(service.submit_mood, user_id, payload.mood)
    if not result.allowed:
        raise HTTPException(429, f"Daily mood check-in limit reached ({result.before}/{result.limit})")
    return {
        "success": True,
        "mood": result.record.current_mood,
        "daily_mood_checks": result.after,
    }


# ----------------------
# Daily limits
# ----------------------

def _limit_payload(result) -> dict:
    return {
        "category": result.category.value,
        "allowed": result.allowed,
        "before": result.before,
        "after": result.after,
        "limit": result.limit,
        "remaining": result.remaining,
        "unlimited": result.unlimited,
        "upgrade_required": not result.allowed,
    }


@app.get("/limits/{user_id}/{category}")
def limit_status(user_id: str, category: Category, service: ProgressService = Depends(get_service)):
    return _limit_payload(_call(service.check_limit, user_id, category, False))


@app.post("/limits/{user_id}/{category}")
def use_limit(user_id: str, category: Category, service: ProgressService = Depends(get_service)):
    return _limit_payload(_call(service.check_limit, user_id, category, True))


# ----------------------
# Honesty
# ----------------------

@app.post("/honesty")
def honesty(metrics: HonestyMetrics):
    score = engine.compute_honesty_score(metrics)
    return {"score": score, "mood": engine.mood_from_honesty(score)}


# ----------------------
# Scheduled reset
# ----------------------

@app.post("/cron/daily-reset")
def daily_reset(authorization: Optional[str] = Header(None), service: ProgressService = Depends(get_service)):
    if CRON_SECRET and authorization != f"Bearer {CRON_SECRET}":
        raise HTTPException(401, "Unauthorized")
    return _call(service.run_daily_reset_sweep).model_dump()


# ----------------------
# Admin & account
# ----------------------

def _admin_payload(record: ProgressRecord, service: ProgressService) -> dict:
    return _progress_payload(record, engine.milestone_view(record, "lifetime", service.milestones))


@app.post("/admin/{user_id}/reset-milestone")
def admin_reset_milestone(user_id: str, service: ProgressService = Depends(get_service)):
    return _admin_payload(_call(service.reset_milestone, user_id), service)


@app.post("/admin/{user_id}/reset-all-time")
def admin_reset_all_time(user_id: str, service: ProgressService = Depends(get_service)):
    return _admin_payload(_call(service.reset_all_time, user_id), service)


@app.post("/admin/{user_id}/reset-counter/{category}")
def admin_reset_counter(user_id: str, category: Category, service: ProgressService = Depends(get_service)):
    return _admin_payload(_call(service.reset_counter, user_id, category), service)


@app.delete("/user/{user_id}")
def delete_user(user_id: str, service: ProgressService = Depends(get_service)):
    if not _call(service.delete_user, user_id):
        raise HTTPException(404, "User not found")
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
