#!/usr/bin/env python3

import os
import re
import logging
from datetime import date, datetime, timedelta
import pandas as pd
from .exceptions import IngestionError
from .models import BookingSource, ExternalBookingRecord
from .utils import parse_booking_source

logger = logging.getLogger(__name__)

# Spreadsheet serial day 0 (the 1900 leap-year bug is folded into the epoch)
EXCEL_EPOCH = datetime(1899, 12, 30)

DEFAULT_CURRENCY = 'USD'
DEFAULT_TOUR_NAME = 'Unknown Tour'

# Acceptable header names per logical field, in priority order.
# Covers the OTA back-office exports and the Indonesian-language sheets.
COLUMN_ALIASES = {
    'booking_ref': ['Booking Ref', 'Booking Reference', 'Reference', 'Ref', 'Booking ID', 'ID',
                    'Konfirmasi', 'No. Booking', 'KODE BOOKING'],
    'customer_name': ['Customer Name', 'Customer', 'Guest Name', 'Name', 'Nama', 'Nama Tamu',
                      'Lead Traveler', 'Leader'],
    'customer_email': ['Email', 'Customer Email', 'Guest Email', 'E-mail'],
    'phone_number': ['Phone', 'Phone Number', 'Mobile', 'Contact', 'Telepon', 'No. HP'],
    'tour_date': ['Tour Date', 'Date', 'Activity Date', 'Travel Date', 'Tanggal Tour', 'Tanggal'],
    'tour_name': ['Tour Name', 'Tour', 'Product', 'Package', 'Activity', 'Nama Tour', 'Paket'],
    'total_price': ['Price', 'Total Price', 'Total', 'Amount', 'Harga', 'Total Harga'],
    'currency': ['Currency', 'Curr', 'Mata Uang'],
    'source': ['Source', 'Platform', 'Channel', 'Sumber', 'FLATFORM'],
    'number_of_adult': ['Adults', 'Adult', 'Number of Adults', 'Pax Adult', 'Dewasa', 'Pax'],
    'number_of_child': ['Children', 'Child', 'Number of Children', 'Pax Child', 'Anak'],
    'meeting_point': ['Meeting Point', 'Pickup', 'Pickup Location', 'Location', 'Lokasi', 'Titik Jemput'],
    'note': ['Note', 'Notes', 'Remarks', 'Comment', 'Catatan', 'Keterangan'],
}

# Columns of the legacy tab-separated "Sales Calculation" export
TXT_COLUMNS = {
    'booking_ref': ['KODE BOOKING', 'Booking Ref', 'Reference'],
    'customer_name': ['Leader', 'Customer Name', 'Name'],
    'tour_date': ['Date', 'Tour Date'],
    'tour_name': ['Tour', 'Tour Name', 'Package'],
    'source': ['FLATFORM', 'Source', 'Platform'],
    'number_of_adult': ['Pax', 'Adults', 'Number of Adults'],
    'package': ['Package'],
}

_DMY_PATTERN = re.compile(r'^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})$')
_SERIAL_PATTERN = re.compile(r'^\d+(\.\d+)?$')


def _is_empty(value):
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _text(value):
    """Cell value as a trimmed string, or None when empty."""
    if _is_empty(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def find_value(row, possible_keys):
    """
    Find a value in a row by trying multiple possible column names.

    Args:
        row: Mapping of header -> cell value
        possible_keys: Ordered list of acceptable header names

    Returns:
        The first non-empty value found, or None
    """
    lowered = {str(key).strip().lower(): key for key in row.keys()}

    for key in possible_keys:
        if key in row and not _is_empty(row[key]):
            return row[key]

        found_key = lowered.get(key.lower())
        if found_key is not None and not _is_empty(row[found_key]):
            return row[found_key]

    return None


def _from_day_month_year(day, month, year):
    try:
        return datetime(year, month, day)
    except ValueError:
        return None


def parse_date(value):
    """
    Parse a tour date from the encodings seen in ledger exports.

    Tried in order:
    1. native date/datetime values (including pandas Timestamps)
    2. spreadsheet serial day numbers (epoch 1899-12-30)
    3. ISO strings ("2025-03-15", "2025-03-15T09:00:00")
    4. D/M/YYYY, falling back to M/D/YYYY when the day/month pair is invalid
    5. any other string pandas can read ("2025/03/15", "Mar 15, 2025")

    Args:
        value: Raw cell value

    Returns:
        datetime or None: Parsed date, None when nothing applies
    """
    if _is_empty(value):
        return None

    if isinstance(value, pd.Timestamp):
        return value.tz_localize(None).to_pydatetime() if value.tzinfo else value.to_pydatetime()
    if isinstance(value, datetime):
        return value.replace(tzinfo=None) if value.tzinfo else value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()

    if isinstance(value, (int, float)) or _SERIAL_PATTERN.match(text):
        try:
            return EXCEL_EPOCH + timedelta(days=float(text))
        except (ValueError, OverflowError):
            logger.debug(f"Serial date out of range: {text}")

    try:
        parsed = datetime.fromisoformat(text)
        return parsed.replace(tzinfo=None) if parsed.tzinfo else parsed
    except ValueError:
        pass

    match = _DMY_PATTERN.match(text)
    if match:
        first, second, year = (int(part) for part in match.groups())
        parsed = _from_day_month_year(first, second, year)
        if parsed is not None and parsed.day == first:
            return parsed
        parsed = _from_day_month_year(second, first, year)
        if parsed is not None and parsed.day == second:
            return parsed
    else:
        # Free-form strings such as "2025/03/15" or "Mar 15, 2025"
        parsed = pd.to_datetime(text, errors='coerce')
        if not pd.isna(parsed):
            if parsed.tzinfo is not None:
                parsed = parsed.tz_localize(None)
            return parsed.to_pydatetime()

    logger.warning(f"⚠️ Could not parse date: {text}")
    return None


def parse_number(value):
    """Parse a price or count, stripping currency symbols and separators."""
    if _is_empty(value):
        return None

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    cleaned = re.sub(r'[^0-9.\-]', '', str(value))
    try:
        return float(cleaned)
    except ValueError:
        return None


def _clean_raw_row(row):
    """Copy of the source row with NaN cells replaced by None (JSON friendly)."""
    return {str(key): (None if _is_empty(val) and not isinstance(val, str) else val) for key, val in row.items()}


def build_external_record(row, row_label, aliases=None):
    """
    Turn one header-keyed row into an ExternalBookingRecord.

    Args:
        row: Mapping of header -> cell value
        row_label: Human readable row number used in warnings
        aliases: Optional alias table overriding COLUMN_ALIASES

    Returns:
        ExternalBookingRecord or None: None when the row must be dropped
    """
    aliases = aliases or COLUMN_ALIASES

    def pick(field):
        return find_value(row, aliases.get(field, []))

    booking_ref = _text(pick('booking_ref'))
    customer_name = _text(pick('customer_name'))

    if not booking_ref or not customer_name:
        logger.warning(f"⚠️ Row {row_label}: Missing required fields (booking ref or customer name) - skipping")
        return None

    raw_date = pick('tour_date')
    tour_date = parse_date(raw_date)
    if tour_date is None:
        logger.warning(f"⚠️ Row {row_label}: Invalid tour date: {raw_date} - skipping")
        return None

    total_price = parse_number(pick('total_price'))
    adults = parse_number(pick('number_of_adult'))
    children = parse_number(pick('number_of_child'))
    source_text = _text(pick('source'))

    return ExternalBookingRecord(
        booking_ref=booking_ref,
        customer_name=customer_name,
        customer_email=_text(pick('customer_email')),
        phone_number=_text(pick('phone_number')),
        tour_date=tour_date,
        tour_name=_text(pick('tour_name')) or DEFAULT_TOUR_NAME,
        total_price=total_price if total_price is not None else 0.0,
        currency=_text(pick('currency')) or DEFAULT_CURRENCY,
        source=parse_booking_source(source_text) if source_text else BookingSource.MANUAL,
        number_of_adult=int(adults) if adults is not None else 1,
        number_of_child=int(children) if children else None,
        meeting_point=_text(pick('meeting_point')),
        note=_text(pick('note')),
        raw_row=_clean_raw_row(row),
    )


class ExcelIngestor:
    """Reads a spreadsheet workbook into external booking records."""

    def __init__(self, sheet_name=None, aliases=None):
        self.sheet_name = sheet_name
        self.aliases = aliases or COLUMN_ALIASES

    def _resolve_sheet(self, excel_file):
        sheet_names = excel_file.sheet_names
        logger.info(f"📋 Found {len(sheet_names)} sheet(s): {sheet_names}")

        if self.sheet_name is None:
            return sheet_names[0]
        if isinstance(self.sheet_name, int):
            if 0 <= self.sheet_name < len(sheet_names):
                return sheet_names[self.sheet_name]
        elif self.sheet_name in sheet_names:
            return self.sheet_name

        raise IngestionError(f'Sheet "{self.sheet_name}" not found in workbook')

    def read(self, file_path):
        """
        Read every data row of the selected sheet.

        Args:
            file_path (str): Path to the .xlsx/.xls workbook

        Returns:
            list: ExternalBookingRecord objects, in sheet order
        """
        logger.info(f"📖 Reading workbook: {file_path}")

        try:
            excel_file = pd.ExcelFile(file_path)
        except FileNotFoundError:
            raise
        except Exception as e:
            raise IngestionError(f"Cannot read workbook {file_path}: {e}") from e

        with excel_file:
            sheet = self._resolve_sheet(excel_file)
            logger.info(f"🔍 Processing sheet: {sheet}")
            df = pd.read_excel(excel_file, sheet_name=sheet, dtype=object)

        df = df.dropna(how='all')
        df = df[[col for col in df.columns if not str(col).startswith('Unnamed:')]]
        logger.info(f"Found {len(df)} rows")

        bookings = []
        for position, (_, row) in enumerate(df.iterrows()):
            # Header is spreadsheet row 1
            record = build_external_record(row.to_dict(), position + 2, self.aliases)
            if record is not None:
                bookings.append(record)

        logger.info(f"✅ Successfully parsed {len(bookings)} bookings")
        return bookings

    def get_headers(self, file_path, sheet_name=None):
        """Return the header cells of a sheet (first sheet by default)."""
        header_df = pd.read_excel(file_path, sheet_name=sheet_name or 0, header=0, nrows=0)
        return [str(col) for col in header_df.columns]


class TxtIngestor:
    """
    Reads the legacy tab-separated sales export.

    Layout: line 1 is the header, line 2 is a blank spacer, data starts on line 3.
    The export carries no price or currency, so price is 0 and currency USD.
    """

    def __init__(self, columns=None, encoding='utf-8'):
        self.columns = columns or TXT_COLUMNS
        self.encoding = encoding

    def read(self, file_path):
        logger.info(f"📖 Reading TXT export: {file_path}")

        with open(file_path, encoding=self.encoding) as handle:
            lines = handle.read().splitlines()

        if not any(line.strip() for line in lines):
            raise IngestionError(f"TXT file is empty: {file_path}")

        header = [cell.strip() for cell in lines[0].split('\t')]
        logger.info(f"Headers: {header}")

        bookings = []
        for line_number, line in enumerate(lines[2:], start=3):
            if not line.strip():
                continue

            cells = [cell.strip() for cell in line.split('\t')]
            if len(cells) < len(header):
                logger.warning(f"⚠️ Row {line_number}: Incomplete data ({len(cells)}/{len(header)} columns) - skipping")
                continue

            record = self._parse_row(dict(zip(header, cells)), line_number)
            if record is not None:
                bookings.append(record)

        logger.info(f"✅ Successfully parsed {len(bookings)} bookings")
        return bookings

    def _parse_row(self, data, line_number):
        booking_ref = _text(find_value(data, self.columns['booking_ref']))
        customer_name = _text(find_value(data, self.columns['customer_name']))

        if not booking_ref or not customer_name:
            logger.warning(f"⚠️ Row {line_number}: Missing required fields - skipping")
            return None

        raw_date = _text(find_value(data, self.columns['tour_date']))
        tour_date = parse_date(raw_date.replace('//', '/')) if raw_date else None
        if tour_date is None:
            logger.warning(f"⚠️ Row {line_number}: Invalid date: {raw_date} - skipping")
            return None

        pax = parse_number(find_value(data, self.columns['number_of_adult']))
        source_text = _text(find_value(data, self.columns['source']))
        package = _text(find_value(data, self.columns['package']))

        return ExternalBookingRecord(
            booking_ref=booking_ref,
            customer_name=customer_name,
            tour_date=tour_date,
            tour_name=_text(find_value(data, self.columns['tour_name'])) or DEFAULT_TOUR_NAME,
            total_price=0.0,
            currency=DEFAULT_CURRENCY,
            source=parse_booking_source(source_text) if source_text else BookingSource.MANUAL,
            number_of_adult=int(pax) if pax else 1,
            note=f"Package: {package}" if package else None,
            raw_row=dict(data),
        )


def load_external_records(file_path, sheet_name=None):
    """
    Load the external ledger, choosing the reader from the file extension.

    Args:
        file_path (str): .txt/.tsv for the legacy export, anything else as a workbook
        sheet_name (str or int, optional): Workbook sheet to read

    Returns:
        list: ExternalBookingRecord objects
    """
    if not os.path.isfile(file_path):
        raise FileNotFoundError(f"Data file not found: {file_path}")

    extension = os.path.splitext(file_path)[1].lower()
    if extension in ('.txt', '.tsv'):
        return TxtIngestor().read(file_path)
    return ExcelIngestor(sheet_name=sheet_name).read(file_path)
