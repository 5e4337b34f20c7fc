from .aggregator import InternalBookingAggregator, SqlBookingStore
from .data_processing import ExcelIngestor, TxtIngestor, load_external_records
from .matching_engine import BookingMatcher
from .orchestrator import run_reconciliation
from .report_builder import ReportBuilder
