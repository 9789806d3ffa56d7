"""
Scheduling core.

Timezone conversion, recurrence expansion, availability resolution and
weighted round robin assignment.
"""

from .availability_resolver import AvailabilityDecision, AvailabilityReason, AvailabilityResolver
from .recurrence_engine import RecurrencePatternEngine
from .round_robin import AssignmentResult, CandidateScore, RoundRobinAssignor, calculate_assignment
from .timezone_converter import TimezoneConverter

__all__ = [
    "AssignmentResult",
    "AvailabilityDecision",
    "AvailabilityReason",
    "AvailabilityResolver",
    "CandidateScore",
    "RecurrencePatternEngine",
    "RoundRobinAssignor",
    "TimezoneConverter",
    "calculate_assignment",
]
