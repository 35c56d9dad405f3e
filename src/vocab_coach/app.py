from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictBool

from .curriculum import load_module
from .db import init_db
from .errors import ContractViolation, CurriculumNotFoundError, StorageUnavailableError
from .models import ActivitySubmission, ItemResult, TuningRecommendation
from .service import ProficiencyService
from .tuning import activity_settings

logger = logging.getLogger(__name__)

# Ensure the database schema exists even when lifespan hooks are not triggered (e.g. in tests).
init_db()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="Vocab Coach", lifespan=lifespan)
service = ProficiencyService()


class StartModuleRequest(BaseModel):
    student_id: str = Field(min_length=1)


class StartActivityRequest(BaseModel):
    student_id: str = Field(min_length=1)
    module_id: str = Field(min_length=1)
    activity_type: str = Field(min_length=1)


class ItemResultIn(BaseModel):
    item: str = Field(min_length=1)
    correct: StrictBool


class EndActivityRequest(BaseModel):
    student_id: str = Field(min_length=1)
    module_id: str = Field(min_length=1)
    activity_type: str = Field(min_length=1)
    total: int = Field(ge=0)
    difficulty: str | None = None
    item_results: list[ItemResultIn] = Field(default_factory=list)


@app.exception_handler(ContractViolation)
async def _contract_violation(_: Request, exc: ContractViolation) -> JSONResponse:
    logger.warning("Rejected request: %s", exc)
    return JSONResponse({"detail": str(exc)}, status_code=422)


@app.exception_handler(StorageUnavailableError)
async def _storage_unavailable(_: Request, exc: StorageUnavailableError) -> JSONResponse:
    logger.warning("Storage unavailable: %s", exc)
    return JSONResponse(
        {"detail": "Couldn't update your progress, please retry."},
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
    )


@app.exception_handler(CurriculumNotFoundError)
async def _curriculum_not_found(_: Request, exc: CurriculumNotFoundError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_404_NOT_FOUND)


def _recommendation_payload(activity_type: str, recommendation: TuningRecommendation) -> dict[str, Any]:
    return {
        "activity_type": activity_type,
        "recommended_tuning": activity_settings(activity_type, recommendation),
        "difficulty": recommendation.difficulty,
        "num_questions": recommendation.num_items,
        "vocabulary_focus": recommendation.focus_items or None,
        "skip_activity": recommendation.skip_activity,
        "skip_reason": recommendation.skip_reason,
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/modules/{module_id}/start")
async def start_module(module_id: str, body: StartModuleRequest) -> dict[str, Any]:
    curriculum = load_module(module_id)
    created = service.start_module(body.student_id, curriculum)
    return {
        "module_id": curriculum.module_id,
        "domain": curriculum.domain,
        "items": len(curriculum.items),
        "created_records": created,
        "state": service.engine.module_state(body.student_id, curriculum.module_id),
    }


@app.post("/activities/start")
async def start_activity(body: StartActivityRequest) -> dict[str, Any]:
    curriculum = load_module(body.module_id)
    recommendation = service.recommend(body.student_id, curriculum, body.activity_type)
    return _recommendation_payload(body.activity_type, recommendation)


@app.post("/activities/end")
async def end_activity(body: EndActivityRequest) -> dict[str, Any]:
    curriculum = load_module(body.module_id)
    submission = ActivitySubmission(
        student_id=body.student_id,
        module_id=curriculum.module_id,
        domain=curriculum.domain,
        activity_type=body.activity_type,
        results=[ItemResult(item_id=result.item, correct=result.correct) for result in body.item_results],
        total=body.total,
        difficulty=body.difficulty,
    )
    outcome = service.record_activity(submission)
    next_recommendation = service.recommend(body.student_id, curriculum, body.activity_type)
    return {
        "score": outcome.score,
        "total": outcome.total,
        "mastered": outcome.mastered,
        "newly_mastered": outcome.newly_mastered,
        "unlocked_activities": outcome.unlocked_activities,
        "next_recommendation": _recommendation_payload(body.activity_type, next_recommendation),
    }


@app.get("/students/{student_id}/modules/{module_id}/mastery")
async def module_mastery(student_id: str, module_id: str) -> dict[str, Any]:
    return {
        "student_id": student_id,
        "module_id": module_id,
        "mastered": service.check_mastery(student_id, module_id),
        "state": service.engine.module_state(student_id, module_id),
    }


def main() -> None:
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("vocab_coach.app:app", host="127.0.0.1", port=8000, reload=True)


if __name__ == "__main__":
    main()
