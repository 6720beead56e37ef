from pydantic import BaseModel, Field


class RouteOut(BaseModel):
    job_type: str
    lane: str
    queue: str
    default_timeout_seconds: int
    max_concurrency: int
    source: str


class GuardRequest(BaseModel):
    stale_after_hours: float | None = Field(default=None, gt=0)


class GuardOut(BaseModel):
    can_proceed: bool
    was_stuck: bool
    reason: str
    hours_stuck: float | None = None
    previous_status: str | None = None
    cleaned: bool = False
