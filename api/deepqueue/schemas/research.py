from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

ResearchStatus = Literal["pending", "processing", "completed", "failed", "cancelled", "incomplete"]


class Research(BaseModel):
    id: str
    question: str
    status: ResearchStatus = "pending"
    result: str | None = None
    error: str | None = None
    upstream_job_id: str | None = None
    created_at: datetime
    updated_at: datetime


class ResearchCreateRequest(BaseModel):
    question: str = Field(min_length=1)

    @field_validator("question")
    @classmethod
    def _reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("question must not be blank")
        return value


class ResearchListOut(BaseModel):
    researches: list[Research] = Field(default_factory=list)
