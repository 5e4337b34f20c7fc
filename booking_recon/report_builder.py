#!/usr/bin/env python3

import logging
from datetime import datetime
import pandas as pd
from .models import (
    PRIORITY_WEIGHT,
    BookingSource,
    CancelledBooking,
    FieldAccuracy,
    MatchResult,
    MatchStatus,
    MissingBooking,
    ParserAnalysis,
    PRReviewItem,
    Priority,
    RebookingPattern,
    Recommendation,
    Report,
    ReportMetadata,
    ReportSummary,
    SourceAccuracy,
)
from .matching_engine import find_orphaned
from .utils import (
    days_between,
    is_within_rebooking_window,
    normalize_customer_name,
    normalize_email,
    string_similarity,
)

logger = logging.getLogger(__name__)

TRACKED_FIELDS = [
    'booking_ref',
    'customer_name',
    'customer_email',
    'phone_number',
    'tour_date',
    'tour_name',
    'total_price',
    'currency',
    'number_of_adult',
    'number_of_child',
]

PARSER_NAMES = {
    BookingSource.GYG: 'GYGParser',
    BookingSource.VIATOR: 'ViatorParser',
    BookingSource.BOKUN: 'BokunParser',
    BookingSource.TRIPDOTCOM: 'TripDotComParser',
    BookingSource.DIRECT: 'DirectParser',
    BookingSource.MANUAL: 'ManualParser',
}

GENERIC_MISSING_REASONS = [
    'Email not received or processed',
    'Parser failed to extract data from email',
    'Email moved to spam or different folder',
    'Booking made through different channel not monitored',
]

SOURCE_MISSING_REASONS = {
    BookingSource.TRIPDOTCOM: 'Trip.com email format changed',
}

CANCELLED_NOTE = 'Expected - external ledger does not track cancellations'

SOURCE_ACCURACY_THRESHOLD = 70.0
FIELD_ACCURACY_THRESHOLD = 80.0
FIELD_HIGH_PRIORITY_THRESHOLD = 60.0
FIELD_MIN_MISMATCHES = 5
MAX_COMMON_ISSUES = 5
MAX_COMMON_DISCREPANCIES = 5

REBOOKING_MIN_SCORE = 0.7
REBOOKING_MIN_REASONS = 2
REBOOKING_NAME_THRESHOLD = 0.8
REBOOKING_TOUR_THRESHOLD = 0.7


class ReportBuilder:
    """
    Builds the reconciliation report from matched datasets.

    Args:
        similarity: String similarity function (a, b) -> [0, 1]
        rebooking_window_days: Days after a cancellation in which a new
            booking counts as a possible rebooking
        price_missing_source: Channel whose confirmations carry no price
    """

    def __init__(self, similarity=string_similarity, rebooking_window_days=30,
                 price_missing_source=BookingSource.TRIPDOTCOM):
        self.similarity = similarity
        self.rebooking_window_days = rebooking_window_days
        self.price_missing_source = price_missing_source

    def build(self, external_records, internal_records, matches, cancelled_records,
              input_file='', date_range=None, generated_at=None):
        """
        Generate the complete tracking report.

        Args:
            external_records: List of ExternalBookingRecord
            internal_records: List of InternalBookingRecord (all statuses)
            matches: List of MatchResult, one per external record
            cancelled_records: List of cancelled InternalBookingRecord
            input_file (str): Name of the ledger file for the metadata
            date_range (tuple, optional): (date_from, date_to) override
            generated_at (datetime, optional): Timestamp override

        Returns:
            Report: Fully derived report
        """
        logger.info("📝 Generating reconciliation report...")

        date_from, date_to = date_range or self._calculate_date_range(external_records, internal_records)

        perfect = [m for m in matches if m.status == MatchStatus.PERFECT]
        partial = [m for m in matches if m.status == MatchStatus.PARTIAL]
        missing = [m for m in matches if m.status == MatchStatus.MISSING]
        ambiguous = [m for m in matches if m.status == MatchStatus.AMBIGUOUS]

        confirmed = [record for record in internal_records if record.is_confirmed]
        orphaned = self.find_orphans(internal_records, matches, cancelled_records)

        summary = ReportSummary(
            total_external=len(external_records),
            total_internal=len(internal_records),
            total_internal_confirmed=len(confirmed),
            total_internal_cancelled=len(cancelled_records),
            perfect_matches=len(perfect),
            partial_matches=len(partial),
            missing_in_internal=len(missing),
            ambiguous_matches=len(ambiguous),
            cancelled_bookings=len(cancelled_records),
            orphaned_in_internal=len(orphaned),
            match_rate=((len(perfect) + len(partial)) / len(external_records) * 100) if external_records else 0.0,
        )

        report = Report(
            metadata=ReportMetadata(
                generated_at=generated_at or datetime.now(),
                input_file=input_file,
                date_from=date_from,
                date_to=date_to,
            ),
            summary=summary,
            matches=perfect + partial + ambiguous,
            missing_in_internal=[
                MissingBooking(
                    external=m.external,
                    possible_reasons=self.determine_missing_reasons(m.external),
                    note=m.note,
                )
                for m in missing
            ],
            cancelled_bookings=[
                CancelledBooking(
                    booking_ref=record.booking_ref,
                    internal=record,
                    cancelled_date=record.updated_at,
                    original_tour_date=record.tour_date,
                    note=CANCELLED_NOTE,
                )
                for record in cancelled_records
            ],
            orphaned=[
                MatchResult(
                    status=MatchStatus.ORPHANED,
                    internal=record,
                    confidence=0.0,
                    note='Confirmed in internal store but missing from external ledger',
                )
                for record in orphaned
            ],
            pr_review_list=self.generate_pr_review_list(cancelled_records, confirmed, orphaned, ambiguous),
            parser_analysis=self.generate_parser_analysis(matches, internal_records),
        )

        logger.info("✅ Report generation complete")
        return report

    def find_orphans(self, internal_records, matches, cancelled_records):
        """Confirmed-like internal records never claimed and not in the cancelled set."""
        orphaned = find_orphaned(internal_records, matches, cancelled_records)
        if orphaned:
            logger.info(f"❓ Found {len(orphaned)} orphaned internal bookings")
        return orphaned

    def generate_pr_review_list(self, cancelled_records, confirmed_records, orphaned, ambiguous):
        """
        Generate the manual review list.

        Returns:
            list: PRReviewItem objects (rebookings, orphans, ambiguous matches)
        """
        review_items = []

        rebookings = self.detect_rebookings(cancelled_records, confirmed_records)
        if rebookings:
            review_items.append(PRReviewItem(
                category='cancelled_rebooking',
                bookings=rebookings,
                reason='Customer cancelled and potentially rebooked with different date or tour',
                suggested_action='Verify if replacement booking should reference original in notes. '
                                 'Consider linking bookings for customer history.',
                priority=Priority.MEDIUM,
            ))

        if orphaned:
            review_items.append(PRReviewItem(
                category='orphaned',
                bookings=list(orphaned),
                reason='Bookings confirmed in internal store but missing from external ledger',
                suggested_action='Review if the ledger needs update OR if these bookings have parsing issues '
                                 'that made matching impossible',
                priority=Priority.HIGH,
            ))

        if ambiguous:
            review_items.append(PRReviewItem(
                category='ambiguous_match',
                bookings=list(ambiguous),
                reason='Several internal bookings on the same date and channel look like the same ledger row',
                suggested_action='Pick the correct booking manually and fix its booking reference',
                priority=Priority.MEDIUM,
            ))

        return review_items

    def detect_rebookings(self, cancelled_records, confirmed_records):
        """
        Detect (cancelled, later confirmed) pairs that look like the same customer rebooking.

        A confirmed booking created 0..window days after a cancellation scores
        +0.5 for the same email, +0.3 x name similarity when above 0.8 and
        +0.2 x tour similarity when above 0.7. Pairs scoring above 0.7 with at
        least two signals are reported; each confirmed booking is used once.

        Returns:
            list: RebookingPattern objects
        """
        patterns = []
        used_replacements = set()

        for cancelled in cancelled_records:
            cancel_date = cancelled.updated_at

            for confirmed in confirmed_records:
                if confirmed.id in used_replacements or confirmed.id == cancelled.id:
                    continue

                if not is_within_rebooking_window(cancel_date, confirmed.created_at, self.rebooking_window_days):
                    continue

                reasons = []
                score = 0.0

                cancelled_email = normalize_email(cancelled.customer_email)
                if cancelled_email and cancelled_email == normalize_email(confirmed.customer_email):
                    score += 0.5
                    reasons.append('Same email address')

                name_similarity = self.similarity(
                    normalize_customer_name(cancelled.customer_name),
                    normalize_customer_name(confirmed.customer_name)
                )
                if name_similarity > REBOOKING_NAME_THRESHOLD:
                    score += name_similarity * 0.3
                    reasons.append(f"Similar name ({name_similarity * 100:.0f}% match)")

                tour_similarity = self.similarity(cancelled.tour_name, confirmed.tour_name)
                if tour_similarity > REBOOKING_TOUR_THRESHOLD:
                    score += tour_similarity * 0.2
                    reasons.append(f"Similar tour ({tour_similarity * 100:.0f}% match)")

                if score > REBOOKING_MIN_SCORE and len(reasons) >= REBOOKING_MIN_REASONS:
                    used_replacements.add(confirmed.id)
                    patterns.append(RebookingPattern(
                        original=cancelled,
                        replacement=confirmed,
                        similarity=score,
                        days_between=int(days_between(cancel_date, confirmed.created_at)),
                        reasons=reasons,
                        suggested_action=f"Link bookings: {cancelled.booking_ref} → {confirmed.booking_ref}",
                    ))

        logger.info(f"🔄 Detected {len(patterns)} potential rebooking pattern(s)")
        return patterns

    def generate_parser_analysis(self, matches, internal_records):
        """Per-source accuracy, per-field accuracy and ranked recommendations."""
        by_source = self.analyze_by_source(matches, internal_records)
        by_field = self.analyze_by_field(matches)
        recommendations = self.generate_recommendations(by_source, by_field, internal_records)
        return ParserAnalysis(by_source=by_source, by_field=by_field, recommendations=recommendations)

    def analyze_by_source(self, matches, internal_records):
        """
        Analyze parser accuracy per channel.

        accuracy = (perfect + 0.5 x partial) / results for the channel x 100
        """
        analysis = []

        for source in BookingSource:
            source_matches = [
                m for m in matches
                if (m.internal is not None and m.internal.source == source)
                or (m.external is not None and m.external.source == source)
            ]

            successful = sum(1 for m in source_matches if m.status == MatchStatus.PERFECT)
            partial = sum(1 for m in source_matches if m.status == MatchStatus.PARTIAL)
            failures = sum(1 for m in source_matches if m.status == MatchStatus.MISSING)
            ambiguous = sum(1 for m in source_matches if m.status == MatchStatus.AMBIGUOUS)
            total = len(source_matches)

            analysis.append(SourceAccuracy(
                source=source,
                total_bookings=sum(1 for record in internal_records if record.source == source),
                total_matched=total,
                successful_matches=successful,
                partial_matches=partial,
                failures=failures,
                ambiguous=ambiguous,
                accuracy=((successful + partial * 0.5) / total * 100) if total > 0 else 0.0,
                common_issues=self.identify_common_issues(
                    [m for m in source_matches if m.status in (MatchStatus.PARTIAL, MatchStatus.MISSING)]
                ),
            ))

        return analysis

    def identify_common_issues(self, matches):
        """Up to five distinct discrepancy notes, in the order first seen."""
        issues = []
        for match in matches:
            for discrepancy in match.discrepancies:
                issue = discrepancy.note or f"{discrepancy.field} mismatch"
                if issue not in issues:
                    issues.append(issue)
                if len(issues) >= MAX_COMMON_ISSUES:
                    return issues
        return issues

    def analyze_by_field(self, matches):
        """
        Analyze accuracy per tracked field over matched pairs.

        Returns:
            list: FieldAccuracy objects with the five most frequent value pairs
        """
        total_comparisons = sum(1 for m in matches if m.internal is not None)

        rows = [
            {
                'field': d.field,
                'external_value': str(d.external_value),
                'internal_value': str(d.internal_value),
            }
            for m in matches for d in m.discrepancies
        ]
        discrepancy_df = pd.DataFrame(rows, columns=['field', 'external_value', 'internal_value'])

        analysis = []
        for field_name in TRACKED_FIELDS:
            field_df = discrepancy_df[discrepancy_df['field'] == field_name]
            mismatches = len(field_df)
            matched = total_comparisons - mismatches

            common = []
            if mismatches:
                counts = (
                    field_df.groupby(['external_value', 'internal_value'], sort=False)
                    .size()
                    .sort_values(ascending=False, kind='stable')
                    .head(MAX_COMMON_DISCREPANCIES)
                )
                common = [
                    {'external_value': external_value, 'internal_value': internal_value, 'count': int(count)}
                    for (external_value, internal_value), count in counts.items()
                ]

            analysis.append(FieldAccuracy(
                field_name=field_name,
                total_comparisons=total_comparisons,
                matches=matched,
                mismatches=mismatches,
                accuracy=(matched / total_comparisons * 100) if total_comparisons > 0 else 100.0,
                common_discrepancies=common,
            ))

        return analysis

    def generate_recommendations(self, by_source, by_field, internal_records):
        """
        Generate parser recommendations sorted by priority, then affected bookings.

        Returns:
            list: Recommendation objects
        """
        recommendations = []

        for source_data in by_source:
            if source_data.total_matched > 0 and source_data.accuracy < SOURCE_ACCURACY_THRESHOLD:
                recommendations.append(Recommendation(
                    priority=Priority.HIGH,
                    parser=PARSER_NAMES[source_data.source],
                    issue=f"Low accuracy: {source_data.accuracy:.1f}%",
                    suggestion=f"Review parser logic for {source_data.source.value}. "
                               f"Common issues: {', '.join(source_data.common_issues) or 'none recorded'}",
                    affected_bookings=source_data.failures + source_data.partial_matches,
                ))

        price_issues = sum(
            1 for record in internal_records
            if record.source == self.price_missing_source and record.is_confirmed and record.total_price == 0
        )
        if price_issues > 0:
            recommendations.append(Recommendation(
                priority=Priority.HIGH,
                parser=PARSER_NAMES[self.price_missing_source],
                issue=f"{price_issues} bookings with missing price (price = 0)",
                suggestion=f"{self.price_missing_source.value} emails do not include price. Consider: "
                           "(1) Fetch from the platform API, (2) Use rate card mapping, or (3) Manual entry workflow",
                affected_bookings=price_issues,
            ))

        for field_data in by_field:
            if field_data.accuracy < FIELD_ACCURACY_THRESHOLD and field_data.mismatches > FIELD_MIN_MISMATCHES:
                recommendations.append(Recommendation(
                    priority=Priority.HIGH if field_data.accuracy < FIELD_HIGH_PRIORITY_THRESHOLD else Priority.MEDIUM,
                    parser='General',
                    issue=f'Field "{field_data.field_name}" has low accuracy: {field_data.accuracy:.1f}%',
                    suggestion=f"Review parsing patterns for {field_data.field_name}. "
                               f"{field_data.mismatches} mismatches detected.",
                    affected_bookings=field_data.mismatches,
                    examples=[
                        {
                            'booking_ref': 'Multiple',
                            'problem': f'External: "{d["external_value"]}" vs Internal: "{d["internal_value"]}" ({d["count"]}x)',
                        }
                        for d in field_data.common_discrepancies[:3]
                    ],
                ))

        recommendations.sort(key=lambda rec: (-PRIORITY_WEIGHT[rec.priority], -rec.affected_bookings))
        return recommendations

    def determine_missing_reasons(self, external):
        """Plausible reasons an external booking has no internal counterpart."""
        reasons = list(GENERIC_MISSING_REASONS)
        if external is not None and external.source in SOURCE_MISSING_REASONS:
            reasons.append(SOURCE_MISSING_REASONS[external.source])
        return reasons

    def _calculate_date_range(self, external_records, internal_records):
        dates = [record.tour_date for record in external_records] + [record.tour_date for record in internal_records]
        dates = [d for d in dates if d is not None]
        if not dates:
            return None, None
        return min(dates), max(dates)
