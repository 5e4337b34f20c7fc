#!/usr/bin/env python3

import sys
import argparse
import logging
from datetime import datetime, time
from booking_recon.aggregator import InternalBookingAggregator, SqlBookingStore
from booking_recon.config import load_settings
from booking_recon.orchestrator import run_reconciliation

logger = logging.getLogger(__name__)


def _date_arg(value):
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r} (expected YYYY-MM-DD)")


def build_parser(settings):
    parser = argparse.ArgumentParser(
        description='Reconcile an external booking ledger against the internal booking store.'
    )
    parser.add_argument('--input', '-i', default=settings.input_file,
                        help='Path to the ledger (.xlsx, .xls, .txt or .tsv)')
    parser.add_argument('--output', '-o', default=settings.output_dir,
                        help='Directory receiving the report files')
    parser.add_argument('--sheet', default=None, help='Workbook sheet name (first sheet by default)')
    parser.add_argument('--db-url', default=settings.db_url, help='SQLAlchemy URL of the booking store')
    parser.add_argument('--date-from', type=_date_arg, default=None,
                        help='Earliest internal tour date to include (YYYY-MM-DD)')
    parser.add_argument('--date-to', type=_date_arg, default=None,
                        help='Latest internal tour date to include (YYYY-MM-DD, inclusive)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    return parser


def main(argv=None):
    """
    Main entry point for the application.

    Returns:
        int: Process exit code (0 on success, 1 on any fatal error)
    """
    settings = load_settings()
    args = build_parser(settings).parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level, logging.INFO),
        format='%(message)s'
    )

    logger.info("🔍 Booking Tracking Analysis")
    logger.info("=" * 70)

    date_to = args.date_to
    if date_to is not None and date_to.time() == time.min:
        date_to = datetime.combine(date_to.date(), time.max)

    try:
        aggregator = InternalBookingAggregator(SqlBookingStore(args.db_url))
        run_reconciliation(
            args.input,
            args.output,
            aggregator,
            sheet_name=args.sheet,
            verbose=args.verbose,
            date_from=args.date_from,
            date_to=date_to,
            rebooking_window_days=settings.rebooking_window_days,
        )
    except FileNotFoundError as e:
        logger.error(f"❌ Error: {str(e)}")
        logger.error("   Please ensure the file exists or specify correct path with --input")
        logger.error("   Supported formats: .xlsx, .xls, .txt, .tsv (tab-separated)")
        return 1
    except Exception:
        logger.exception("❌ Analysis failed")
        return 1

    logger.info("✅ Analysis complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
