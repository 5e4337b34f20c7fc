#!/usr/bin/env python3

"""
Canonical records and report structures shared by the reconciliation stages.

- ExternalBookingRecord: one row of the manually compiled ledger
- InternalBookingRecord: one booking from the persisted store, with the
  most recent ingestion message linked to it
- MatchResult / Discrepancy: output of the match engine
- Report and its parts: output of the report builder
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class BookingSource(str, Enum):
    GYG = "GYG"
    VIATOR = "VIATOR"
    BOKUN = "BOKUN"
    TRIPDOTCOM = "TRIPDOTCOM"
    DIRECT = "DIRECT"
    MANUAL = "MANUAL"


class BookingStatus(str, Enum):
    NEW = "NEW"
    READY = "READY"
    ATTENTION = "ATTENTION"
    UPDATED = "UPDATED"
    COMPLETED = "COMPLETED"
    DONE = "DONE"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# Statuses denoting an active or realized booking
CONFIRMED_STATUSES = frozenset({
    BookingStatus.READY,
    BookingStatus.ATTENTION,
    BookingStatus.COMPLETED,
    BookingStatus.DONE,
})

CANCELLED_STATUSES = frozenset({BookingStatus.CANCELLED})


class MatchStatus(str, Enum):
    PERFECT = "perfect"
    PARTIAL = "partial"
    MISSING = "missing"
    AMBIGUOUS = "ambiguous"
    CANCELLED = "cancelled"
    ORPHANED = "orphaned"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


PRIORITY_WEIGHT = {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}


@dataclass(frozen=True)
class ExternalBookingRecord:
    booking_ref: str
    customer_name: str
    tour_date: datetime
    tour_name: str
    total_price: float
    currency: str
    source: BookingSource
    number_of_adult: int
    customer_email: Optional[str] = None
    phone_number: Optional[str] = None
    number_of_child: Optional[int] = None
    meeting_point: Optional[str] = None
    note: Optional[str] = None
    raw_row: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class InternalBookingRecord:
    id: int
    booking_ref: str
    customer_name: str
    customer_email: str
    tour_date: datetime
    tour_name: str
    total_price: float
    currency: str
    source: BookingSource
    status: BookingStatus
    number_of_adult: int
    created_at: datetime
    updated_at: datetime
    phone_number: Optional[str] = None
    tour_time: Optional[str] = None
    number_of_child: Optional[int] = None
    meeting_point: Optional[str] = None
    note: Optional[str] = None
    message_id: Optional[str] = None
    message_subject: Optional[str] = None
    message_received_at: Optional[datetime] = None
    parsed_data: Any = field(default=None, compare=False)

    @property
    def is_confirmed(self):
        return self.status in CONFIRMED_STATUSES

    @property
    def is_cancelled(self):
        return self.status in CANCELLED_STATUSES


@dataclass(frozen=True)
class Discrepancy:
    field: str
    external_value: Any
    internal_value: Any
    severity: Severity
    note: Optional[str] = None


@dataclass(frozen=True)
class MatchResult:
    status: MatchStatus
    confidence: float
    external: Optional[ExternalBookingRecord] = None
    internal: Optional[InternalBookingRecord] = None
    discrepancies: Tuple[Discrepancy, ...] = ()
    note: Optional[str] = None

    @property
    def is_matched(self):
        return self.internal is not None


@dataclass(frozen=True)
class ReportMetadata:
    generated_at: datetime
    input_file: str
    date_from: Optional[datetime]
    date_to: Optional[datetime]


@dataclass(frozen=True)
class ReportSummary:
    total_external: int
    total_internal: int
    total_internal_confirmed: int
    total_internal_cancelled: int
    perfect_matches: int
    partial_matches: int
    missing_in_internal: int
    ambiguous_matches: int
    cancelled_bookings: int
    orphaned_in_internal: int
    match_rate: float


@dataclass(frozen=True)
class MissingBooking:
    external: ExternalBookingRecord
    possible_reasons: List[str]
    note: Optional[str] = None


@dataclass(frozen=True)
class CancelledBooking:
    booking_ref: str
    internal: InternalBookingRecord
    cancelled_date: Optional[datetime]
    original_tour_date: datetime
    note: str


@dataclass(frozen=True)
class RebookingPattern:
    original: InternalBookingRecord
    replacement: InternalBookingRecord
    similarity: float
    days_between: int
    reasons: List[str]
    suggested_action: str


@dataclass(frozen=True)
class PRReviewItem:
    category: str
    bookings: List[Any]
    reason: str
    suggested_action: str
    priority: Priority


@dataclass(frozen=True)
class SourceAccuracy:
    source: BookingSource
    total_bookings: int
    total_matched: int
    successful_matches: int
    partial_matches: int
    failures: int
    ambiguous: int
    accuracy: float
    common_issues: List[str]


@dataclass(frozen=True)
class FieldAccuracy:
    field_name: str
    total_comparisons: int
    matches: int
    mismatches: int
    accuracy: float
    common_discrepancies: List[Dict[str, Any]]


@dataclass(frozen=True)
class Recommendation:
    priority: Priority
    parser: str
    issue: str
    suggestion: str
    affected_bookings: int
    examples: List[Dict[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class ParserAnalysis:
    by_source: List[SourceAccuracy]
    by_field: List[FieldAccuracy]
    recommendations: List[Recommendation]


@dataclass(frozen=True)
class Report:
    metadata: ReportMetadata
    summary: ReportSummary
    matches: List[MatchResult]
    missing_in_internal: List[MissingBooking]
    cancelled_bookings: List[CancelledBooking]
    orphaned: List[MatchResult]
    pr_review_list: List[PRReviewItem]
    parser_analysis: ParserAnalysis
