#!/usr/bin/env python3

"""
Internal dataset aggregation.

Reads bookings produced by the email-ingestion pipeline from the persisted
store and reshapes them into InternalBookingRecord objects. The store is a
collaborator: anything exposing fetch_bookings() and fetch_message_links()
returning DataFrames can be handed to InternalBookingAggregator.
"""

import json
import logging
import pandas as pd
from sqlalchemy import bindparam, create_engine, text
from .models import (
    CANCELLED_STATUSES,
    CONFIRMED_STATUSES,
    BookingSource,
    BookingStatus,
    InternalBookingRecord,
)
from .utils import parse_booking_source

logger = logging.getLogger(__name__)

UNKNOWN_CUSTOMER = 'Unknown'
UNKNOWN_TOUR = 'Unknown Tour'

BOOKINGS_QUERY = """
SELECT
    b.id,
    b.booking_ref,
    COALESCE(NULLIF(b.main_contact_name, ''), u.name) AS customer_name,
    COALESCE(NULLIF(b.main_contact_email, ''), u.email) AS customer_email,
    b.phone_number,
    b.tour_date,
    b.tour_time,
    p.package_name AS tour_name,
    b.total_price,
    b.currency,
    b.source,
    b.status,
    b.number_of_adult,
    b.number_of_child,
    b.meeting_point,
    b.note,
    b.created_at,
    b.updated_at
FROM bookings b
LEFT JOIN users u ON u.id = b.user_id
LEFT JOIN packages p ON p.id = b.package_id
"""

MESSAGE_LINKS_QUERY = """
SELECT
    be.booking_id,
    e.id AS message_id,
    e.subject,
    e.received_at,
    e.parsed_data
FROM booking_emails be
JOIN emails e ON e.id = be.email_id
WHERE be.booking_id IN :booking_ids
"""


class SqlBookingStore:
    """
    Booking store backed by a SQL database.

    Args:
        engine: SQLAlchemy engine, or a database URL to create one from
    """

    def __init__(self, engine):
        self.engine = create_engine(engine) if isinstance(engine, str) else engine

    def fetch_bookings(self, date_from=None, date_to=None, statuses=None):
        """
        Query bookings filtered by tour date range and lifecycle status.

        Returns:
            pandas.DataFrame: One row per booking, ordered by tour date
        """
        conditions = []
        params = {}

        if date_from is not None:
            conditions.append("b.tour_date >= :date_from")
            params['date_from'] = date_from.isoformat(sep=' ')
        if date_to is not None:
            conditions.append("b.tour_date <= :date_to")
            params['date_to'] = date_to.isoformat(sep=' ')

        query = BOOKINGS_QUERY
        bind_params = []
        if statuses:
            conditions.append("b.status IN :statuses")
            params['statuses'] = [BookingStatus(status).value for status in statuses]
            bind_params.append(bindparam('statuses', expanding=True))

        if conditions:
            query += "WHERE " + " AND ".join(conditions) + "\n"
        query += "ORDER BY b.tour_date ASC, b.id ASC"

        statement = text(query)
        if bind_params:
            statement = statement.bindparams(*bind_params)

        with self.engine.connect() as conn:
            return pd.read_sql(statement, conn, params=params)

    def fetch_message_links(self, booking_ids):
        """Every ingestion message linked to the given bookings."""
        if not booking_ids:
            return pd.DataFrame(columns=['booking_id', 'message_id', 'subject', 'received_at', 'parsed_data'])

        statement = text(MESSAGE_LINKS_QUERY).bindparams(bindparam('booking_ids', expanding=True))
        with self.engine.connect() as conn:
            return pd.read_sql(statement, conn, params={'booking_ids': list(booking_ids)})


def _value(row, column):
    value = row.get(column)
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def _timestamp(value):
    if value is None:
        return None
    parsed = pd.to_datetime(value, errors='coerce')
    if pd.isna(parsed):
        return None
    # Offsets are dropped, keeping wall-clock time
    if parsed.tzinfo is not None:
        parsed = parsed.tz_localize(None)
    return parsed.to_pydatetime()


def _parsed_payload(value):
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def latest_messages(links):
    """
    Keep the most recently received message per booking.

    Args:
        links: DataFrame of booking_id/message_id/subject/received_at/parsed_data

    Returns:
        dict: booking_id -> row dict of the latest message
    """
    if links is None or links.empty:
        return {}

    links = links.copy()
    links['received_at'] = pd.to_datetime(links['received_at'], errors='coerce')
    links = links.sort_values('received_at', ascending=False, kind='stable', na_position='last')
    links = links.drop_duplicates(subset='booking_id', keep='first')

    return {int(row['booking_id']): row for row in links.to_dict('records')}


class InternalBookingAggregator:
    """Builds InternalBookingRecord lists from a booking store."""

    def __init__(self, store):
        self.store = store

    def fetch_all(self, date_from=None, date_to=None, statuses=None):
        """
        Fetch bookings with their most recent ingestion message.

        Args:
            date_from (datetime, optional): Earliest tour date
            date_to (datetime, optional): Latest tour date
            statuses (iterable, optional): Lifecycle statuses to include (all when empty)

        Returns:
            list: InternalBookingRecord objects ordered by tour date ascending
        """
        logger.info("🔍 Fetching bookings from the internal store...")
        bookings_df = self.store.fetch_bookings(date_from=date_from, date_to=date_to, statuses=statuses)
        logger.info(f"Found {len(bookings_df)} bookings in store")

        if bookings_df.empty:
            return []

        booking_ids = [int(booking_id) for booking_id in bookings_df['id'].tolist()]
        messages = latest_messages(self.store.fetch_message_links(booking_ids))

        records = []
        for row in bookings_df.to_dict('records'):
            record = self._to_record(row, messages.get(int(row['id'])))
            if record is not None:
                records.append(record)

        records.sort(key=lambda record: (record.tour_date, record.id))
        return records

    def _to_record(self, row, message):
        booking_id = int(row['id'])

        try:
            status = BookingStatus(str(_value(row, 'status')).upper())
        except ValueError:
            logger.warning(f"⚠️ Booking {booking_id}: Unknown status {row.get('status')!r} - skipping")
            return None

        tour_date = _timestamp(_value(row, 'tour_date'))
        if tour_date is None:
            logger.warning(f"⚠️ Booking {booking_id}: Missing tour date - skipping")
            return None

        source = _value(row, 'source')
        children = _value(row, 'number_of_child')
        adults = _value(row, 'number_of_adult')
        price = _value(row, 'total_price')
        message = message or {}

        return InternalBookingRecord(
            id=booking_id,
            booking_ref=str(_value(row, 'booking_ref') or ''),
            customer_name=_value(row, 'customer_name') or UNKNOWN_CUSTOMER,
            customer_email=_value(row, 'customer_email') or '',
            phone_number=_value(row, 'phone_number'),
            tour_date=tour_date,
            tour_time=_value(row, 'tour_time'),
            tour_name=_value(row, 'tour_name') or UNKNOWN_TOUR,
            total_price=float(price) if price is not None else 0.0,
            currency=_value(row, 'currency') or 'USD',
            source=parse_booking_source(source) if source else BookingSource.MANUAL,
            status=status,
            number_of_adult=int(adults) if adults is not None else 1,
            number_of_child=int(children) if children else None,
            meeting_point=_value(row, 'meeting_point'),
            note=_value(row, 'note'),
            created_at=_timestamp(_value(row, 'created_at')),
            updated_at=_timestamp(_value(row, 'updated_at')),
            message_id=None if _value(message, 'message_id') is None else str(message['message_id']),
            message_subject=_value(message, 'subject'),
            message_received_at=_timestamp(_value(message, 'received_at')),
            parsed_data=_parsed_payload(_value(message, 'parsed_data')),
        )

    def fetch_confirmed(self, date_from=None, date_to=None):
        """Bookings in a confirmed-like status (ready, attention, completed, done)."""
        return self.fetch_all(date_from, date_to, statuses=sorted(CONFIRMED_STATUSES))

    def fetch_cancelled(self, date_from=None, date_to=None):
        return self.fetch_all(date_from, date_to, statuses=sorted(CANCELLED_STATUSES))

    def fetch_by_source(self, source, date_from=None, date_to=None):
        source = parse_booking_source(source)
        return [record for record in self.fetch_all(date_from, date_to) if record.source == source]

    def get_statistics(self, date_from=None, date_to=None):
        """
        Count bookings by lifecycle bucket and by channel.

        Returns:
            dict: total, confirmed, cancelled, completed, no_show, by_source, by_status
        """
        records = self.fetch_all(date_from, date_to)

        stats = {
            'total': len(records),
            'confirmed': 0,
            'cancelled': 0,
            'completed': 0,
            'no_show': 0,
            'by_source': {},
            'by_status': {},
        }

        for record in records:
            if record.status in (BookingStatus.READY, BookingStatus.ATTENTION):
                stats['confirmed'] += 1
            elif record.status == BookingStatus.CANCELLED:
                stats['cancelled'] += 1
            elif record.status in (BookingStatus.COMPLETED, BookingStatus.DONE):
                stats['completed'] += 1
            elif record.status == BookingStatus.NO_SHOW:
                stats['no_show'] += 1

            stats['by_source'][record.source.value] = stats['by_source'].get(record.source.value, 0) + 1
            stats['by_status'][record.status.value] = stats['by_status'].get(record.status.value, 0) + 1

        return stats
