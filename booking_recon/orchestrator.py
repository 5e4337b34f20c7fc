#!/usr/bin/env python3

import os
import logging
from .data_processing import load_external_records
from .matching_engine import BookingMatcher
from .output_handler import log_console_summary, save_external_data, save_report
from .report_builder import ReportBuilder
from .utils import string_similarity

logger = logging.getLogger(__name__)


def run_reconciliation(input_file, output_dir, aggregator, sheet_name=None, verbose=False,
                       date_from=None, date_to=None, similarity=string_similarity,
                       rebooking_window_days=30, generated_at=None):
    """
    Run the reconciliation between an external ledger and the internal booking store.

    Args:
        input_file (str): Path to the ledger (.xlsx/.xls workbook or .txt/.tsv export)
        output_dir (str): Directory receiving the report artifacts (created when missing)
        aggregator: InternalBookingAggregator (or anything with fetch_confirmed/fetch_cancelled)
        sheet_name (str, optional): Workbook sheet; the first sheet when None
        verbose (bool): Log the extra per-step details
        date_from (datetime, optional): Earliest internal tour date to fetch
        date_to (datetime, optional): Latest internal tour date to fetch
        similarity: String similarity function used by matching and reporting
        rebooking_window_days (int): Rebooking detection window
        generated_at (datetime, optional): Report timestamp override

    Returns:
        dict: Results dictionary with the report, match results and written paths
    """
    logger.info("\n=== Starting Booking Reconciliation ===")

    if not os.path.exists(input_file):
        raise FileNotFoundError(f"Data file not found: {input_file}")

    if not os.path.isdir(output_dir):
        os.makedirs(output_dir, exist_ok=True)
        logger.info(f"📁 Created output directory: {output_dir}")

    logger.info(f"📁 Data File: {os.path.basename(input_file)}")
    logger.info(f"📂 Output Directory: {output_dir}")

    try:
        # Step 1: external ledger
        logger.info("🔄 Step 1/5: Processing data file...")
        external_records = load_external_records(input_file, sheet_name=sheet_name)
        logger.info(f"   ✅ Loaded {len(external_records)} bookings from {os.path.basename(input_file)}")

        # Step 2: internal store
        logger.info("🔄 Step 2/5: Fetching bookings from the internal store...")
        confirmed = aggregator.fetch_confirmed(date_from=date_from, date_to=date_to)
        cancelled = aggregator.fetch_cancelled(date_from=date_from, date_to=date_to)
        internal_records = confirmed + cancelled
        logger.info(f"   ✅ Loaded {len(internal_records)} bookings from the store")
        logger.info(f"      - Confirmed/Completed: {len(confirmed)}")
        logger.info(f"      - Cancelled: {len(cancelled)}")

        # Step 3: matching
        logger.info("🔄 Step 3/5: Matching ledger with internal bookings...")
        matcher = BookingMatcher(similarity=similarity)
        matched = matcher.match(external_records, internal_records)
        results = matched['results']
        if verbose:
            for result in results:
                if result.external is not None:
                    logger.info(f"   {result.external.booking_ref}: {result.status.value} ({result.confidence * 100:.0f}%)")

        # Step 4: report
        logger.info("🔄 Step 4/5: Generating comprehensive report...")
        builder = ReportBuilder(similarity=similarity, rebooking_window_days=rebooking_window_days)
        report = builder.build(
            external_records,
            internal_records,
            results,
            cancelled,
            input_file=os.path.basename(input_file),
            generated_at=generated_at,
        )

        # Step 5: artifacts, only once the report is complete
        logger.info("🔄 Step 5/5: Saving reports...")
        external_path = save_external_data(external_records, output_dir)
        paths = save_report(report, output_dir)
        paths['external_data'] = external_path

        log_console_summary(report)

        return {
            'report': report,
            'results': results,
            'unmatched': matched['unmatched'],
            'paths': paths,
        }

    except Exception as e:
        logger.error(f"\nError: {str(e)}")
        raise
