#!/usr/bin/env python3

import os
import json
import logging
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
import pandas as pd
from .utils import format_date_range, truncate

logger = logging.getLogger(__name__)

EXTERNAL_DATA_FILE = 'external-data.json'

MATCH_COLUMNS = ['status', 'confidence', 'external_ref', 'internal_ref', 'internal_id',
                 'customer_name', 'tour_date', 'source', 'discrepancies', 'note']
DISCREPANCY_COLUMNS = ['external_ref', 'internal_id', 'field', 'external_value', 'internal_value',
                       'severity', 'note']
MISSING_COLUMNS = ['booking_ref', 'customer_name', 'tour_date', 'source', 'note', 'possible_reasons']
RECOMMENDATION_COLUMNS = ['priority', 'parser', 'issue', 'suggestion', 'affected_bookings']


def _json_default(value):
    """Serialize the values json cannot handle natively (enums, dates, numpy scalars)."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if hasattr(value, 'item'):
        return value.item()
    return str(value)


def to_serializable(obj):
    """Dataclass tree -> plain dict/list structure."""
    return asdict(obj) if is_dataclass(obj) else obj


def write_json(path, payload):
    """Write JSON to a sibling temp file and move it into place."""
    temp_path = path + '.partial'
    try:
        with open(temp_path, 'w', encoding='utf-8') as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False, default=_json_default)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise
    return path


def report_timestamp(report):
    return report.metadata.generated_at.strftime('%Y-%m-%dT%H-%M-%S')


def save_external_data(external_records, output_dir):
    """Dump the canonicalized ledger rows for audit."""
    path = os.path.join(output_dir, EXTERNAL_DATA_FILE)
    write_json(path, [to_serializable(record) for record in external_records])
    logger.info(f"📄 Saved external data to: {path}")
    return path


def pr_review_payload(report):
    """Stand-alone PR review document with the number of bookings to review."""
    return {
        'generated_at': report.metadata.generated_at,
        'total_items': sum(len(item.bookings) for item in report.pr_review_list),
        'items': [to_serializable(item) for item in report.pr_review_list],
    }


def _match_rows(matches):
    rows = []
    for match in matches:
        external = match.external
        internal = match.internal
        rows.append({
            'status': match.status.value,
            'confidence': round(match.confidence, 3),
            'external_ref': external.booking_ref if external else None,
            'internal_ref': internal.booking_ref if internal else None,
            'internal_id': internal.id if internal else None,
            'customer_name': external.customer_name if external else (internal.customer_name if internal else None),
            'tour_date': (external or internal).tour_date if (external or internal) else None,
            'source': (external or internal).source.value if (external or internal) else None,
            'discrepancies': len(match.discrepancies),
            'note': match.note,
        })
    return rows


def _discrepancy_rows(matches):
    return [
        {
            'external_ref': match.external.booking_ref if match.external else None,
            'internal_id': match.internal.id if match.internal else None,
            'field': d.field,
            'external_value': str(d.external_value),
            'internal_value': str(d.internal_value),
            'severity': d.severity.value,
            'note': d.note,
        }
        for match in matches for d in match.discrepancies
    ]


def write_review_workbook(report, path):
    """
    Write the report as an Excel workbook for reviewers.

    Sheets: summary, matches, discrepancies, missing, orphaned, recommendations.
    """
    summary_df = pd.DataFrame([asdict(report.summary)]).T.reset_index()
    summary_df.columns = ['metric', 'value']

    matches_df = pd.DataFrame(_match_rows(report.matches), columns=MATCH_COLUMNS)
    discrepancies_df = pd.DataFrame(_discrepancy_rows(report.matches), columns=DISCREPANCY_COLUMNS)
    missing_df = pd.DataFrame([
        {
            'booking_ref': item.external.booking_ref,
            'customer_name': item.external.customer_name,
            'tour_date': item.external.tour_date,
            'source': item.external.source.value,
            'note': item.note,
            'possible_reasons': '; '.join(item.possible_reasons),
        }
        for item in report.missing_in_internal
    ], columns=MISSING_COLUMNS)
    orphaned_df = pd.DataFrame(_match_rows(report.orphaned), columns=MATCH_COLUMNS)
    recommendations_df = pd.DataFrame([
        {
            'priority': rec.priority.value,
            'parser': rec.parser,
            'issue': rec.issue,
            'suggestion': rec.suggestion,
            'affected_bookings': rec.affected_bookings,
        }
        for rec in report.parser_analysis.recommendations
    ], columns=RECOMMENDATION_COLUMNS)

    # The writer validates the suffix, so the temp name must end in .xlsx
    root, ext = os.path.splitext(path)
    temp_path = f"{root}.partial{ext}"
    try:
        with pd.ExcelWriter(temp_path, engine='openpyxl') as writer:
            summary_df.to_excel(writer, sheet_name='summary', index=False)
            matches_df.to_excel(writer, sheet_name='matches', index=False)
            discrepancies_df.to_excel(writer, sheet_name='discrepancies', index=False)
            missing_df.to_excel(writer, sheet_name='missing', index=False)
            orphaned_df.to_excel(writer, sheet_name='orphaned', index=False)
            recommendations_df.to_excel(writer, sheet_name='recommendations', index=False)
        os.replace(temp_path, path)
    except Exception as e:
        logger.error(f"Error writing to Excel: {str(e)}")
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise

    return path


def save_report(report, output_dir):
    """
    Persist the report artifacts.

    The main JSON report is written last so its presence marks a complete run.

    Args:
        report: Report object (already fully built)
        output_dir (str): Existing output directory

    Returns:
        dict: Paths of the written files ('report', 'workbook', 'pr_review')
    """
    timestamp = report_timestamp(report)
    paths = {'pr_review': None}

    paths['workbook'] = write_review_workbook(
        report, os.path.join(output_dir, f"tracking-report-{timestamp}.xlsx")
    )
    logger.info(f"✅ Review workbook saved: {paths['workbook']}")

    if report.pr_review_list:
        paths['pr_review'] = write_json(
            os.path.join(output_dir, f"pr-review-list-{timestamp}.json"), pr_review_payload(report)
        )
        logger.info(f"✅ PR review list saved: {paths['pr_review']}")

    paths['report'] = write_json(
        os.path.join(output_dir, f"tracking-report-{timestamp}.json"), to_serializable(report)
    )
    logger.info(f"✅ Main report saved: {paths['report']}")

    return paths


def _share(count, total):
    return (count / total * 100) if total else 0.0


def log_console_summary(report):
    """Log the human readable analysis summary."""
    summary = report.summary
    total = summary.total_external

    logger.info("")
    logger.info("=" * 70)
    logger.info("📊 Analysis Summary")
    logger.info("=" * 70)
    logger.info(f"📅 Date Range: {format_date_range(report.metadata.date_from, report.metadata.date_to)}")
    logger.info("")
    logger.info("📈 Booking Counts:")
    logger.info(f"   External records:     {summary.total_external}")
    logger.info(f"   Internal bookings:    {summary.total_internal}")
    logger.info(f"   - Confirmed:          {summary.total_internal_confirmed}")
    logger.info(f"   - Cancelled:          {summary.total_internal_cancelled}")
    logger.info("")
    logger.info("🔍 Matching Results:")
    logger.info(f"   ✅ Perfect matches:   {summary.perfect_matches} ({_share(summary.perfect_matches, total):.1f}%)")
    logger.info(f"   ⚠️  Partial matches:  {summary.partial_matches} ({_share(summary.partial_matches, total):.1f}%)")
    logger.info(f"   ❌ Missing internal:  {summary.missing_in_internal} ({_share(summary.missing_in_internal, total):.1f}%)")
    logger.info(f"   ❔ Ambiguous:         {summary.ambiguous_matches}")
    logger.info(f"   🚫 Cancelled (OK):    {summary.cancelled_bookings}")
    logger.info(f"   ❓ Orphaned:          {summary.orphaned_in_internal}")
    logger.info("")
    logger.info(f"   Overall Match Rate:   {summary.match_rate:.1f}%")
    logger.info("")

    if report.pr_review_list:
        logger.info("📋 PR Review List (Manual Review Required):")
        for item in report.pr_review_list:
            emoji = '🔄' if item.category == 'cancelled_rebooking' else '❓'
            logger.info(f"   {emoji} {item.category}: {len(item.bookings)} items ({item.priority.value} priority)")
        logger.info("")

    logger.info("📈 Parser Accuracy:")
    for source_data in report.parser_analysis.by_source:
        if source_data.total_matched > 0:
            logger.info(
                f"   {source_data.source.value:<12}: {source_data.accuracy:.1f}% "
                f"({source_data.successful_matches}/{source_data.total_matched})"
            )
    logger.info("")

    recommendations = report.parser_analysis.recommendations[:5]
    if recommendations:
        logger.info("📝 Top Parser Recommendations:")
        for i, rec in enumerate(recommendations, start=1):
            emoji = {'high': '🔴', 'medium': '🟡'}.get(rec.priority.value, '🟢')
            logger.info(f"   {i}. {emoji} [{rec.priority.value.upper()}] {rec.parser}")
            logger.info(f"      Issue: {truncate(rec.issue, 100)}")
            logger.info(f"      Affected: {rec.affected_bookings} bookings")
        logger.info("")
