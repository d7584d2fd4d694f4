"""Shapes expected back from the content service.

Generated JSON is validated here before anything is stored. A payload that
does not fit raises ContentShapeError; nothing is corrected or filled in.
"""
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from focus_engine.errors import ContentShapeError

MCQ_COUNT = 6
OPTION_COUNT = 4
THEORY_COUNT = 7


class McqSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(min_length=1)
    options: list[str] = Field(min_length=OPTION_COUNT, max_length=OPTION_COUNT)
    correct_answer: int = Field(ge=0, le=OPTION_COUNT - 1, alias="correctAnswer")


class TaskPlanSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    day_index: int = Field(default=0, ge=0, alias="dayIndex")
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    topic: str | None = None
    type: Literal["reading", "writing", "coding", "quiz", "project"] = "reading"
    difficulty: Literal["easy", "medium", "hard"] | None = None
    duration_hours: float = Field(gt=0, le=4, alias="durationHours")
    chapter_number: int | None = Field(default=None, alias="chapterNumber")


class VerdictSchema(BaseModel):
    decision: Literal["downvoter_correct", "reviewee_correct"]
    confidence: float = Field(ge=0, le=1)
    reasoning: str = ""


_mcq_list = TypeAdapter(list[McqSchema])
_theory_list = TypeAdapter(list[str])
_plan_list = TypeAdapter(list[TaskPlanSchema])
_verdict = TypeAdapter(VerdictSchema)


def _check(adapter, data, what: str):
    try:
        return adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ContentShapeError(f"Invalid {what}: {e.errors()[0]['msg']}") from e


def validate_mcqs(data) -> list[McqSchema]:
    mcqs = _check(_mcq_list, data, "MCQ list")
    if len(mcqs) != MCQ_COUNT:
        raise ContentShapeError(f"Expected {MCQ_COUNT} MCQs, got {len(mcqs)}")
    return mcqs


def validate_theory_questions(data) -> list[str]:
    questions = _check(_theory_list, data, "theory question list")
    if len(questions) != THEORY_COUNT:
        raise ContentShapeError(f"Expected {THEORY_COUNT} theory questions, got {len(questions)}")
    if any(not q.strip() for q in questions):
        raise ContentShapeError("Theory questions must not be blank")
    return questions


def validate_task_plans(data, total_days: int, max_duration: float = 4) -> list[TaskPlanSchema]:
    plans = _check(_plan_list, data, "task plan")
    if not plans:
        raise ContentShapeError("Task plan is empty")
    for plan in plans:
        if plan.day_index >= total_days:
            raise ContentShapeError(f"dayIndex {plan.day_index} outside 0..{total_days - 1}")
        if plan.duration_hours > max_duration:
            raise ContentShapeError(f"durationHours {plan.duration_hours} exceeds {max_duration}")
    return plans


def validate_verdict(data) -> VerdictSchema:
    return _check(_verdict, data, "verdict")
