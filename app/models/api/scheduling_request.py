# app/models/api/scheduling_request.py
"""
Scheduling API request models.
Used by routes for input validation.
"""

from datetime import date, datetime, time

from pydantic import BaseModel, Field, model_validator

from app.models.domain.scheduling_domain import PatternFrequency


class AssignRequest(BaseModel):
    """Request to pick a team member, optionally creating the booking too."""

    event_type_id: str = Field(..., min_length=1, description="Event type being booked")
    start_time: datetime = Field(..., description="Booking start (timezone-aware)")
    end_time: datetime = Field(..., description="Booking end (timezone-aware)")
    listing_id: str | None = Field(None, description="Listing; resolved from the event type if omitted")
    timezone: str | None = Field(None, description="IANA zone of the request")
    create_booking: bool = Field(default=False, description="Create the booking for the winner")
    provider: str = Field(default="builtin", description="Booking backend used when creating")
    user_id: str | None = Field(None, description="Guest user placing the booking")
    guest_count: int = Field(default=1, ge=1, description="Number of guests")
    base_price: float = Field(default=0.0, ge=0, description="Price before fees and tax")
    discount_amount: float = Field(default=0.0, ge=0, description="Discount off the total")
    special_requests: str | None = Field(None, max_length=1000)

    @model_validator(mode="after")
    def check_interval(self):
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError("start_time and end_time must include a UTC offset")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class PatternDefinition(BaseModel):
    """Inline recurring pattern definition."""

    pattern: PatternFrequency = Field(..., description="daily, weekly, monthly or yearly")
    start_date: date = Field(..., description="First date of the series (inclusive)")
    interval: int = Field(default=1, description="Repeat every N periods")
    days_of_week: list[int] = Field(default_factory=list, description="1=Monday ... 7=Sunday")
    days_of_month: list[int] = Field(default_factory=list)
    week_of_month: list[int] = Field(default_factory=list, description="1-5, or -1 for last")
    month_of_year: list[int] = Field(default_factory=list)
    start_time: time | None = None
    end_time: time | None = None
    end_date: date | None = None
    occurrences: int | None = None
    exception_dates: list[date] = Field(default_factory=list)
    timezone: str = Field(default="UTC", description="IANA zone of start_time/end_time")
    active: bool = True


class CreatePatternRequest(PatternDefinition):
    """Store a recurring pattern for an event type."""

    event_type_id: str = Field(..., min_length=1, description="Event type the pattern belongs to")
    listing_id: str | None = None


class ExpandPatternRequest(BaseModel):
    """Expand a stored pattern (pattern_id) or an inline definition."""

    pattern_id: str | None = Field(None, description="Stored pattern to expand")
    definition: PatternDefinition | None = Field(None, description="Inline pattern to expand")
    window_start: date | None = Field(None, description="Inclusive window start")
    window_end: date | None = Field(None, description="Inclusive window end")

    @model_validator(mode="after")
    def check_source(self):
        if (self.pattern_id is None) == (self.definition is None):
            raise ValueError("Provide exactly one of pattern_id or definition")
        return self


class AvailabilityCheckRequest(BaseModel):
    """Check whether one team member can take an interval."""

    team_member_id: str = Field(..., min_length=1)
    start_time: datetime = Field(..., description="Interval start (timezone-aware)")
    end_time: datetime = Field(..., description="Interval end (timezone-aware)")
    timezone: str | None = Field(None, description="IANA zone of the request")
