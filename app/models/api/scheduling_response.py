# app/models/api/scheduling_response.py
"""
Scheduling API response models.
Used by routes for output formatting.
"""

from datetime import date, datetime, time

from pydantic import BaseModel, Field


class CandidateScoreResponse(BaseModel):
    member_id: str
    user_id: str
    weight: float
    assignment_count: int
    last_assigned_at: datetime | None = None
    score: float


class BookingResponse(BaseModel):
    id: str
    listing_id: str | None = None
    event_type_id: str | None = None
    team_member_id: str | None = None
    start_time: datetime
    end_time: datetime
    timezone: str
    status: str
    assignment_status: str
    payment_status: str
    total_amount: float
    currency: str
    confirmation_code: str


class AssignResponse(BaseModel):
    """Outcome of an assignment request."""

    assigned: bool = Field(..., description="Whether a team member was chosen")
    reason: str = Field(..., description="Why the outcome was reached")
    listing_id: str | None = None
    member_id: str | None = None
    user_id: str | None = None
    scores: list[CandidateScoreResponse] = Field(default_factory=list)
    booking: BookingResponse | None = Field(None, description="Created booking, when requested")
    outcome: str | None = Field(None, description="assigned, no_assignment or assignment_failed")
    attempts: int | None = None


class SlotResponse(BaseModel):
    date: date
    start_time: time | None = None
    end_time: time | None = None
    timezone: str
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    recurring_pattern_id: str | None = None


class PatternResponse(BaseModel):
    id: str
    pattern: str
    start_date: date
    interval: int
    days_of_week: list[int]
    days_of_month: list[int]
    week_of_month: list[int]
    month_of_year: list[int]
    start_time: time | None = None
    end_time: time | None = None
    end_date: date | None = None
    occurrences: int | None = None
    exception_dates: list[date]
    timezone: str
    active: bool
    event_type_id: str | None = None
    listing_id: str | None = None


class ExpandPatternResponse(BaseModel):
    dates: list[date]
    slots: list[SlotResponse]
    total_count: int


class AvailabilityCheckResponse(BaseModel):
    team_member_id: str
    available: bool
    reason: str
    degraded: bool = Field(default=False, description="External calendar check was skipped")


class TimezoneInfoResponse(BaseModel):
    timezone: str
    offset: str
