from datetime import datetime

import pandas as pd
import pytest

from booking_recon.models import (
    BookingSource,
    BookingStatus,
    ExternalBookingRecord,
    InternalBookingRecord,
)


def make_external(**overrides):
    values = dict(
        booking_ref='GYG-1001',
        customer_name='John Smith',
        tour_date=datetime(2025, 3, 15),
        tour_name='Sunrise Trekking',
        total_price=100.0,
        currency='USD',
        source=BookingSource.GYG,
        number_of_adult=2,
    )
    values.update(overrides)
    return ExternalBookingRecord(**values)


def make_internal(**overrides):
    values = dict(
        id=1,
        booking_ref='GYG-1001',
        customer_name='John Smith',
        customer_email='john@example.com',
        tour_date=datetime(2025, 3, 15),
        tour_name='Sunrise Trekking',
        total_price=100.0,
        currency='USD',
        source=BookingSource.GYG,
        status=BookingStatus.READY,
        number_of_adult=2,
        created_at=datetime(2025, 2, 1, 10, 0),
        updated_at=datetime(2025, 2, 1, 10, 0),
    )
    values.update(overrides)
    return InternalBookingRecord(**values)


class FakeBookingStore:
    """In-memory store returning DataFrames like SqlBookingStore."""

    def __init__(self, bookings, links=None):
        self.bookings = pd.DataFrame(bookings)
        self.links = pd.DataFrame(
            links or [], columns=['booking_id', 'message_id', 'subject', 'received_at', 'parsed_data']
        )
        self.calls = []

    def fetch_bookings(self, date_from=None, date_to=None, statuses=None):
        self.calls.append({'date_from': date_from, 'date_to': date_to, 'statuses': statuses})
        df = self.bookings
        if df.empty:
            return df
        if statuses:
            df = df[df['status'].isin([BookingStatus(s).value for s in statuses])]
        if date_from is not None:
            df = df[pd.to_datetime(df['tour_date']) >= date_from]
        if date_to is not None:
            df = df[pd.to_datetime(df['tour_date']) <= date_to]
        return df.reset_index(drop=True)

    def fetch_message_links(self, booking_ids):
        return self.links[self.links['booking_id'].isin(booking_ids)].reset_index(drop=True)


class FakeAggregator:
    """Aggregator double handing out prepared record lists."""

    def __init__(self, confirmed=None, cancelled=None):
        self.confirmed = list(confirmed or [])
        self.cancelled = list(cancelled or [])

    def fetch_confirmed(self, date_from=None, date_to=None):
        return list(self.confirmed)

    def fetch_cancelled(self, date_from=None, date_to=None):
        return list(self.cancelled)


def booking_row(**overrides):
    row = {
        'id': 1,
        'booking_ref': 'GYG-1001',
        'customer_name': 'John Smith',
        'customer_email': 'john@example.com',
        'phone_number': None,
        'tour_date': '2025-03-15 00:00:00',
        'tour_time': None,
        'tour_name': 'Sunrise Trekking',
        'total_price': 100.0,
        'currency': 'USD',
        'source': 'GYG',
        'status': 'READY',
        'number_of_adult': 2,
        'number_of_child': None,
        'meeting_point': None,
        'note': None,
        'created_at': '2025-02-01 10:00:00',
        'updated_at': '2025-02-01 10:00:00',
    }
    row.update(overrides)
    return row


@pytest.fixture
def external_factory():
    return make_external


@pytest.fixture
def internal_factory():
    return make_internal
