from datetime import datetime

import pandas as pd
import pytest

from booking_recon.data_processing import (
    ExcelIngestor,
    TxtIngestor,
    build_external_record,
    find_value,
    load_external_records,
    parse_date,
    parse_number,
)
from booking_recon.exceptions import IngestionError
from booking_recon.models import BookingSource


@pytest.mark.parametrize('value, expected', [
    ('15/03/2025', datetime(2025, 3, 15)),
    ('03/15/2025', datetime(2025, 3, 15)),
    ('2025-03-15', datetime(2025, 3, 15)),
    ('2025-03-15T09:30:00', datetime(2025, 3, 15, 9, 30)),
    (45731, datetime(2025, 3, 15)),
    ('45731', datetime(2025, 3, 15)),
    (pd.Timestamp('2025-03-15'), datetime(2025, 3, 15)),
    (pd.Timestamp('2025-03-15 09:00', tz='UTC'), datetime(2025, 3, 15, 9, 0)),
    ('2025-03-15T09:00:00+07:00', datetime(2025, 3, 15, 9, 0)),
    ('2025/03/15', datetime(2025, 3, 15)),
    ('Mar 15, 2025', datetime(2025, 3, 15)),
    ('15 Mar 2025', datetime(2025, 3, 15)),
])
def test_parse_date_encodings(value, expected):
    assert parse_date(value) == expected


def test_parse_date_rejects_garbage():
    assert parse_date('next tuesday') is None
    assert parse_date('TBC') is None
    assert parse_date('') is None
    assert parse_date(None) is None


def test_parse_number():
    assert parse_number('$1,250.50') == 1250.5
    assert parse_number(3) == 3.0
    assert parse_number('n/a') is None
    assert parse_number(float('nan')) is None


def test_find_value_is_case_insensitive_and_skips_empty():
    row = {'booking ref': 'GYG-1', 'Name': '', 'Customer': 'Jane'}
    assert find_value(row, ['Booking Ref']) == 'GYG-1'
    assert find_value(row, ['Name', 'Customer']) == 'Jane'
    assert find_value(row, ['Missing']) is None


class TestBuildExternalRecord:
    def test_defaults(self):
        record = build_external_record(
            {'Booking Ref': 'A1', 'Customer Name': 'Jane Doe', 'Tour Date': '2025-03-15'}, 2
        )
        assert record.total_price == 0.0
        assert record.currency == 'USD'
        assert record.number_of_adult == 1
        assert record.number_of_child is None
        assert record.tour_name == 'Unknown Tour'
        assert record.source == BookingSource.MANUAL

    def test_missing_required_field_drops_row(self):
        assert build_external_record({'Booking Ref': 'A1', 'Tour Date': '2025-03-15'}, 2) is None

    def test_invalid_date_drops_row(self):
        row = {'Booking Ref': 'A1', 'Customer Name': 'Jane', 'Tour Date': 'soon'}
        assert build_external_record(row, 2) is None

    def test_zero_children_is_unspecified(self):
        row = {'Booking Ref': 'A1', 'Customer Name': 'Jane', 'Tour Date': '2025-03-15', 'Children': 0}
        assert build_external_record(row, 2).number_of_child is None


@pytest.fixture
def workbook(tmp_path):
    path = tmp_path / 'ledger.xlsx'
    bookings = pd.DataFrame([
        {'Booking Ref': 'GYG-1001', 'Customer Name': 'John Smith', 'Tour Date': '15/03/2025',
         'Tour Name': 'Sunrise Trekking', 'Price': '$1,250.50', 'Platform': 'GetYourGuide',
         'Adults': 2, 'Children': 0},
        {'Booking Ref': 'VIA-2002', 'Customer Name': None, 'Tour Date': '16/03/2025',
         'Tour Name': 'Rice Terrace', 'Price': 80, 'Platform': 'Viator', 'Adults': 1, 'Children': None},
        {'Booking Ref': 'VIA-2003', 'Customer Name': 'Ann Lee', 'Tour Date': 'not a date',
         'Tour Name': 'Rice Terrace', 'Price': 80, 'Platform': 'Viator', 'Adults': 1, 'Children': None},
        {'Booking Ref': 12345, 'Customer Name': 'Budi Santoso', 'Tour Date': '2025-03-17',
         'Tour Name': 'Waterfall Tour', 'Price': 40, 'Platform': 'walk-in', 'Adults': None, 'Children': 1},
    ])
    other = pd.DataFrame([
        {'Booking Ref': 'BOK-1', 'Customer Name': 'Mia Chen', 'Tour Date': '2025-04-01', 'Platform': 'Bokun'},
    ])
    with pd.ExcelWriter(path, engine='openpyxl') as writer:
        bookings.to_excel(writer, sheet_name='Bookings', index=False)
        other.to_excel(writer, sheet_name='April', index=False)
    return str(path)


class TestExcelIngestor:
    def test_reads_first_sheet_and_drops_invalid_rows(self, workbook):
        records = ExcelIngestor().read(workbook)

        assert [r.booking_ref for r in records] == ['GYG-1001', '12345']

        first = records[0]
        assert first.customer_name == 'John Smith'
        assert first.tour_date == datetime(2025, 3, 15)
        assert first.total_price == 1250.5
        assert first.source == BookingSource.GYG
        assert first.number_of_adult == 2
        assert first.number_of_child is None

        second = records[1]
        assert second.source == BookingSource.MANUAL
        assert second.number_of_adult == 1
        assert second.number_of_child == 1

    def test_named_sheet(self, workbook):
        records = ExcelIngestor(sheet_name='April').read(workbook)
        assert [r.booking_ref for r in records] == ['BOK-1']
        assert records[0].source == BookingSource.BOKUN

    def test_missing_sheet(self, workbook):
        with pytest.raises(IngestionError):
            ExcelIngestor(sheet_name='May').read(workbook)

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / 'broken.xlsx'
        path.write_text('not a workbook')
        with pytest.raises(IngestionError):
            ExcelIngestor().read(str(path))

    def test_get_headers(self, workbook):
        headers = ExcelIngestor().get_headers(workbook)
        assert headers[:3] == ['Booking Ref', 'Customer Name', 'Tour Date']


TXT_EXPORT = (
    "KODE BOOKING\tLeader\tDate\tTour\tFLATFORM\tPax\tPackage\n"
    "\n"
    "BST-001\tJane Doe\t15//03/2025\tMount Batur\tGYG\t2\tSunrise\n"
    "\n"
    "BST-002\tKim Park\n"
    "BST-003\tLee Wong\t16/03/2025\tUbud Walk\ttrip.com\t\t\n"
)


class TestTxtIngestor:
    def test_reads_export(self, tmp_path):
        path = tmp_path / 'sales.txt'
        path.write_text(TXT_EXPORT, encoding='utf-8')

        records = TxtIngestor().read(str(path))

        assert [r.booking_ref for r in records] == ['BST-001', 'BST-003']
        first = records[0]
        assert first.tour_date == datetime(2025, 3, 15)
        assert first.tour_name == 'Mount Batur'
        assert first.number_of_adult == 2
        assert first.total_price == 0.0
        assert first.currency == 'USD'
        assert first.note == 'Package: Sunrise'
        assert records[1].source == BookingSource.TRIPDOTCOM
        assert records[1].number_of_adult == 1
        assert records[1].note is None

    def test_empty_export(self, tmp_path):
        path = tmp_path / 'empty.txt'
        path.write_text('\n\n', encoding='utf-8')
        with pytest.raises(IngestionError):
            TxtIngestor().read(str(path))


def test_load_external_records_dispatches_on_extension(tmp_path, workbook):
    path = tmp_path / 'sales.tsv'
    path.write_text(TXT_EXPORT, encoding='utf-8')

    assert len(load_external_records(str(path))) == 2
    assert len(load_external_records(workbook, sheet_name='April')) == 1


def test_load_external_records_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_external_records(str(tmp_path / 'nope.xlsx'))
