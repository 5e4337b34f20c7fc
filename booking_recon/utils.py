#!/usr/bin/env python3

import re
import logging
from datetime import date, datetime
from fuzzywuzzy import fuzz
from .models import BookingSource

logger = logging.getLogger(__name__)

# Placeholder the email parser stores when a confirmation carries no address
PLACEHOLDER_EMAIL_MARKER = 'no-email@'

# Substring markers per channel, checked in this order
SOURCE_MARKERS = [
    (BookingSource.GYG, ('GYG', 'GETYOURGUIDE')),
    (BookingSource.VIATOR, ('VIATOR',)),
    (BookingSource.BOKUN, ('BOKUN',)),
    (BookingSource.TRIPDOTCOM, ('TRIP',)),
    (BookingSource.DIRECT, ('DIRECT', 'WEBSITE')),
]

SIGNAL_WEIGHTS = {
    'booking_ref': 0.4,
    'customer_name': 0.3,
    'tour_date': 0.2,
    'tour_name': 0.1,
}


def _clean(value):
    if value is None:
        return ''
    return re.sub(r'\s+', ' ', str(value)).strip().lower()


def string_similarity(str1, str2):
    """
    Fuzzy similarity of two strings in [0, 1], ignoring case and whitespace runs.

    Uses fuzzywuzzy's simple ratio. Any callable with the same signature can be
    handed to the matcher or report builder instead.
    """
    s1 = _clean(str1)
    s2 = _clean(str2)
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0
    return fuzz.ratio(s1, s2) / 100.0


def token_similarity(str1, str2):
    """Word-order insensitive similarity in [0, 1] (drop-in alternative to string_similarity)."""
    s1 = _clean(str1)
    s2 = _clean(str2)
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0
    return fuzz.token_sort_ratio(s1, s2) / 100.0


def normalize_booking_ref(ref):
    """Uppercase and strip everything but letters and digits (GYG-123, gyg 123 -> GYG123)."""
    if ref is None:
        return ''
    return re.sub(r'[^A-Z0-9]', '', str(ref).upper())


def normalize_customer_name(name):
    """
    Normalize a customer name for comparison.

    Handles "John Doe", "JOHN  DOE" and the reversed "Doe, John" form,
    which becomes "john doe".
    """
    if not name:
        return ''

    normalized = str(name).lower().strip()

    if ',' in normalized:
        parts = [part.strip() for part in normalized.split(',')]
        normalized = ' '.join(reversed(parts))

    return re.sub(r'\s+', ' ', normalized).strip()


def normalize_phone_number(phone):
    """Keep digits and a leading '+' only."""
    if not phone:
        return ''
    phone = str(phone).strip()
    digits = re.sub(r'[^0-9]', '', phone)
    return '+' + digits if phone.startswith('+') else digits


def normalize_email(email):
    if not email:
        return ''
    return str(email).strip().lower()


def is_placeholder_email(email):
    return PLACEHOLDER_EMAIL_MARKER in normalize_email(email)


def _as_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def is_same_date(date1, date2):
    """Compare year/month/day only; time of day and offsets are ignored."""
    d1 = _as_date(date1)
    d2 = _as_date(date2)
    if d1 is None or d2 is None:
        return False
    return (d1.year, d1.month, d1.day) == (d2.year, d2.month, d2.day)


def parse_booking_source(source):
    """
    Classify a free-text channel name into a BookingSource.

    Args:
        source: Channel text from an export (e.g. "GetYourGuide", "trip.com")

    Returns:
        BookingSource: The first channel whose marker is a substring, else MANUAL
    """
    if isinstance(source, BookingSource):
        return source
    if not source:
        return BookingSource.MANUAL

    normalized = str(source).upper().strip()
    for channel, markers in SOURCE_MARKERS:
        if any(marker in normalized for marker in markers):
            return channel

    return BookingSource.MANUAL


def booking_similarity(booking1, booking2, similarity=string_similarity):
    """
    Weighted composite similarity between two booking records.

    Only the signals present on both sides contribute, and the result is
    divided by the sum of the weights actually used:
    - booking reference equality (0.4)
    - customer name similarity (0.3)
    - same tour date (0.2)
    - tour name similarity (0.1)

    Args:
        booking1: External or internal record
        booking2: External or internal record
        similarity: String similarity function returning [0, 1]

    Returns:
        float: Score in [0, 1]
    """
    score = 0.0
    weights = 0.0

    if booking1.booking_ref and booking2.booking_ref:
        ref_match = normalize_booking_ref(booking1.booking_ref) == normalize_booking_ref(booking2.booking_ref)
        score += SIGNAL_WEIGHTS['booking_ref'] if ref_match else 0.0
        weights += SIGNAL_WEIGHTS['booking_ref']

    if booking1.customer_name and booking2.customer_name:
        name_score = similarity(
            normalize_customer_name(booking1.customer_name),
            normalize_customer_name(booking2.customer_name)
        )
        score += name_score * SIGNAL_WEIGHTS['customer_name']
        weights += SIGNAL_WEIGHTS['customer_name']

    if booking1.tour_date is not None and booking2.tour_date is not None:
        if is_same_date(booking1.tour_date, booking2.tour_date):
            score += SIGNAL_WEIGHTS['tour_date']
        weights += SIGNAL_WEIGHTS['tour_date']

    if booking1.tour_name and booking2.tour_name:
        tour_score = similarity(booking1.tour_name, booking2.tour_name)
        score += tour_score * SIGNAL_WEIGHTS['tour_name']
        weights += SIGNAL_WEIGHTS['tour_name']

    if weights == 0:
        return 0.0
    return min(max(score / weights, 0.0), 1.0)


def days_between(start, end):
    """Fractional days from start to end (negative when end precedes start)."""
    return (end - start).total_seconds() / 86400.0


def is_within_rebooking_window(cancelled_at, booked_at, max_days=30):
    """True when booked_at falls 0..max_days (inclusive) after cancelled_at."""
    if cancelled_at is None or booked_at is None:
        return False
    diff = days_between(cancelled_at, booked_at)
    return 0 <= diff <= max_days


def detect_parsing_issue(external_value, internal_value, field_name):
    """
    Recognize known parser failure patterns for a mismatching field.

    Returns:
        str or None: A diagnostic note, or None when no pattern applies
    """
    if field_name == 'total_price':
        try:
            if float(internal_value) == 0 and float(external_value) > 0:
                return 'Price not extracted from email (Trip.com issue)'
        except (TypeError, ValueError):
            return None

    if field_name == 'customer_email' and internal_value and is_placeholder_email(internal_value):
        return 'Email not available in source email'

    if field_name == 'customer_name':
        if internal_value and ',' in str(internal_value) and ',' not in str(external_value or ''):
            return 'Name format not reversed properly'

    if field_name == 'tour_time' and not internal_value and external_value:
        return 'Tour time not extracted from email'

    return None


def truncate(text, max_length=50):
    if not text:
        return ''
    text = str(text)
    if len(text) <= max_length:
        return text
    return text[:max_length] + '...'


def format_date_range(date_from, date_to):
    """Render a range like 'Jun 01, 2025 - Jun 30, 2025'."""
    if date_from is None or date_to is None:
        return 'n/a'
    return f"{date_from:%b %d, %Y} - {date_to:%b %d, %Y}"
