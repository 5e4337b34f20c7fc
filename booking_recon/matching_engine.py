#!/usr/bin/env python3

import logging
from .models import Discrepancy, MatchResult, MatchStatus, Severity
from .utils import (
    booking_similarity,
    detect_parsing_issue,
    is_placeholder_email,
    is_same_date,
    normalize_booking_ref,
    normalize_customer_name,
    normalize_email,
    normalize_phone_number,
    string_similarity,
)

logger = logging.getLogger(__name__)

ACCEPT_THRESHOLD = 0.80
AMBIGUITY_THRESHOLD = 0.70

NAME_MISMATCH_THRESHOLD = 0.90
NAME_HIGH_SEVERITY_THRESHOLD = 0.70
TOUR_MISMATCH_THRESHOLD = 0.70
PRICE_RELATIVE_TOLERANCE = 0.01
PRICE_MINIMUM_TOLERANCE = 1.0


class ClaimTracker:
    """
    Tracks which internal records have been claimed during one matching run.

    Matching is one-to-one: once an internal record is claimed by an external
    record it is never offered to a later one. The tracker lives for a single
    BookingMatcher.match() call.
    """

    def __init__(self):
        self.claimed_by = {}     # internal id -> external position that claimed it
        self.exact_claims = 0
        self.fuzzy_claims = 0

    def is_claimed(self, internal_id):
        return internal_id in self.claimed_by

    def available(self, internal_records):
        """Internal records not yet claimed, in their original order."""
        return [record for record in internal_records if record.id not in self.claimed_by]

    def claim(self, external_index, internal_id, fuzzy=False):
        """
        Claim an internal record for an external record.

        Returns:
            bool: False when the internal record was already claimed
        """
        if internal_id in self.claimed_by:
            logger.warning(
                f"External {external_index}: internal {internal_id} already claimed by "
                f"external {self.claimed_by[internal_id]} - ignoring"
            )
            return False

        self.claimed_by[internal_id] = external_index
        if fuzzy:
            self.fuzzy_claims += 1
        else:
            self.exact_claims += 1
        return True

    def get_usage_summary(self):
        """Get summary of claims for logging."""
        return {
            'claimed_internal': len(self.claimed_by),
            'exact_claims': self.exact_claims,
            'fuzzy_claims': self.fuzzy_claims,
        }


def _pct(score):
    return f"{score * 100:.1f}%"


class BookingMatcher:
    """
    Resolves external ledger records against internal bookings.

    Args:
        similarity: String similarity function (a, b) -> [0, 1]
        scorer: Composite record scorer (external, internal) -> [0, 1];
            defaults to booking_similarity using `similarity`
        accept_threshold: Minimum fuzzy score to accept the best candidate
        ambiguity_threshold: Runner-up score at which the outcome is ambiguous
    """

    def __init__(self, similarity=string_similarity, scorer=None,
                 accept_threshold=ACCEPT_THRESHOLD, ambiguity_threshold=AMBIGUITY_THRESHOLD):
        self.similarity = similarity
        self.scorer = scorer or (lambda external, internal: booking_similarity(external, internal, similarity))
        self.accept_threshold = accept_threshold
        self.ambiguity_threshold = ambiguity_threshold

    def match(self, external_records, internal_records):
        """
        Match every external record to at most one internal record.

        External records are processed in input order and claim internal
        records greedily; there is no re-assignment once a record is claimed.

        Args:
            external_records: List of ExternalBookingRecord
            internal_records: List of InternalBookingRecord

        Returns:
            dict: {'results': [MatchResult, ...] one per external record,
                   'unmatched': [ExternalBookingRecord, ...] with no internal record}
        """
        logger.info(f"\n=== Matching {len(external_records)} external bookings with {len(internal_records)} internal bookings ===")

        tracker = ClaimTracker()
        results = []
        unmatched = []

        for index, external in enumerate(external_records):
            try:
                result, fuzzy = self._find_best_match(external, tracker.available(internal_records))
            except Exception as e:
                logger.error(f"❌ External {index} ({external.booking_ref}): matching failed: {str(e)}")
                result, fuzzy = MatchResult(
                    status=MatchStatus.MISSING,
                    external=external,
                    confidence=0.0,
                    note=f"Matching failed: {e}",
                ), False

            if result.internal is not None:
                tracker.claim(index, result.internal.id, fuzzy=fuzzy)
            else:
                unmatched.append(external)

            results.append(result)

        logger.info(f"📊 Claim summary: {tracker.get_usage_summary()}")
        logger.info(f"✓ Matched: {len(results) - len(unmatched)}, Unmatched: {len(unmatched)}")

        return {'results': results, 'unmatched': unmatched}

    def _find_best_match(self, external, available):
        """
        Find the internal record for one external record.

        Returns:
            tuple: (MatchResult, was_fuzzy)
        """
        # Step 1: exact booking reference
        reference = normalize_booking_ref(external.booking_ref)
        if reference:
            for internal in available:
                if normalize_booking_ref(internal.booking_ref) == reference:
                    logger.debug(f"{external.booking_ref}: exact reference match with internal {internal.id}")
                    return self.compare(external, internal), False

        # Step 2: fuzzy candidates on the same day and channel
        candidates = [
            internal for internal in available
            if is_same_date(internal.tour_date, external.tour_date) and internal.source == external.source
        ]

        if not candidates:
            return MatchResult(
                status=MatchStatus.MISSING,
                external=external,
                confidence=0.0,
                note='No candidates found (different date or source)',
            ), False

        scored = [(self._score(external, candidate), candidate) for candidate in candidates]
        scored.sort(key=lambda item: item[0], reverse=True)

        best_score, best = scored[0]

        if len(scored) > 1 and scored[1][0] >= self.ambiguity_threshold:
            second_score = scored[1][0]
            return MatchResult(
                status=MatchStatus.AMBIGUOUS,
                external=external,
                confidence=best_score,
                note=f"Multiple potential matches found (top: {_pct(best_score)}, second: {_pct(second_score)})",
            ), False

        if best_score >= self.accept_threshold:
            result = self.compare(external, best)
            return MatchResult(
                status=result.status,
                external=result.external,
                internal=result.internal,
                confidence=result.confidence,
                discrepancies=result.discrepancies,
                note=f"Fuzzy matched with {_pct(best_score)} confidence",
            ), True

        return MatchResult(
            status=MatchStatus.MISSING,
            external=external,
            confidence=best_score,
            note=f"Best match only {_pct(best_score)} confident",
        ), False

    def _score(self, external, internal):
        return min(max(float(self.scorer(external, internal)), 0.0), 1.0)

    def compare(self, external, internal):
        """
        Compare a matched pair field by field.

        Args:
            external: ExternalBookingRecord
            internal: InternalBookingRecord

        Returns:
            MatchResult: perfect when no discrepancy was found, else partial
        """
        discrepancies = []

        # Booking reference
        if normalize_booking_ref(external.booking_ref) != normalize_booking_ref(internal.booking_ref):
            discrepancies.append(Discrepancy(
                field='booking_ref',
                external_value=external.booking_ref,
                internal_value=internal.booking_ref,
                severity=Severity.HIGH,
                note='Booking reference mismatch',
            ))

        # Customer name
        name_similarity = self.similarity(
            normalize_customer_name(external.customer_name),
            normalize_customer_name(internal.customer_name)
        )
        if name_similarity < NAME_MISMATCH_THRESHOLD:
            issue = detect_parsing_issue(external.customer_name, internal.customer_name, 'customer_name')
            discrepancies.append(Discrepancy(
                field='customer_name',
                external_value=external.customer_name,
                internal_value=internal.customer_name,
                severity=Severity.HIGH if name_similarity < NAME_HIGH_SEVERITY_THRESHOLD else Severity.MEDIUM,
                note=issue or 'Name format difference',
            ))

        # Email, skipped when the parser stored its placeholder
        if external.customer_email and internal.customer_email and not is_placeholder_email(internal.customer_email):
            if normalize_email(external.customer_email) != normalize_email(internal.customer_email):
                discrepancies.append(Discrepancy(
                    field='customer_email',
                    external_value=external.customer_email,
                    internal_value=internal.customer_email,
                    severity=Severity.MEDIUM,
                ))

        # Phone
        if external.phone_number and internal.phone_number:
            if normalize_phone_number(external.phone_number) != normalize_phone_number(internal.phone_number):
                discrepancies.append(Discrepancy(
                    field='phone_number',
                    external_value=external.phone_number,
                    internal_value=internal.phone_number,
                    severity=Severity.LOW,
                ))

        # Tour date
        if not is_same_date(external.tour_date, internal.tour_date):
            discrepancies.append(Discrepancy(
                field='tour_date',
                external_value=external.tour_date.date().isoformat(),
                internal_value=internal.tour_date.date().isoformat(),
                severity=Severity.HIGH,
                note='Tour date mismatch',
            ))

        # Tour name
        if self.similarity(external.tour_name, internal.tour_name) < TOUR_MISMATCH_THRESHOLD:
            discrepancies.append(Discrepancy(
                field='tour_name',
                external_value=external.tour_name,
                internal_value=internal.tour_name,
                severity=Severity.MEDIUM,
                note='Tour name difference (abbreviations or formatting)',
            ))

        # Price: 1% of the external price, at least one currency unit
        price_diff = abs(external.total_price - internal.total_price)
        price_threshold = max(external.total_price * PRICE_RELATIVE_TOLERANCE, PRICE_MINIMUM_TOLERANCE)
        if price_diff > price_threshold:
            issue = detect_parsing_issue(external.total_price, internal.total_price, 'total_price')
            discrepancies.append(Discrepancy(
                field='total_price',
                external_value=f"{external.total_price} {external.currency}",
                internal_value=f"{internal.total_price} {internal.currency}",
                severity=Severity.LOW if internal.total_price == 0 else Severity.HIGH,
                note=issue or 'Price mismatch',
            ))

        # Currency
        if (external.currency or '').strip().upper() != (internal.currency or '').strip().upper():
            discrepancies.append(Discrepancy(
                field='currency',
                external_value=external.currency,
                internal_value=internal.currency,
                severity=Severity.MEDIUM,
            ))

        # Pax
        if external.number_of_adult != internal.number_of_adult:
            discrepancies.append(Discrepancy(
                field='number_of_adult',
                external_value=external.number_of_adult,
                internal_value=internal.number_of_adult,
                severity=Severity.HIGH,
                note='Adult count mismatch',
            ))

        # Zero children means unspecified on either side
        external_children = external.number_of_child or 0
        internal_children = internal.number_of_child or 0
        if external_children and internal_children and external_children != internal_children:
            discrepancies.append(Discrepancy(
                field='number_of_child',
                external_value=external_children,
                internal_value=internal_children,
                severity=Severity.MEDIUM,
                note='Child count mismatch',
            ))

        status = MatchStatus.PERFECT if not discrepancies else MatchStatus.PARTIAL
        confidence = max(0.0, 1.0 - 0.1 * len(discrepancies))

        return MatchResult(
            status=status,
            external=external,
            internal=internal,
            confidence=confidence,
            discrepancies=tuple(discrepancies),
        )


def find_orphaned(internal_records, results, cancelled_records=()):
    """
    Internal records in a confirmed-like status never claimed by a match.

    Args:
        internal_records: List of InternalBookingRecord
        results: List of MatchResult from BookingMatcher.match()
        cancelled_records: Records known to be cancelled, always excluded

    Returns:
        list: Unclaimed confirmed InternalBookingRecord objects, in input order
    """
    matched_ids = {result.internal.id for result in results if result.internal is not None}
    cancelled_ids = {record.id for record in cancelled_records}
    return [
        record for record in internal_records
        if record.is_confirmed and record.id not in matched_ids and record.id not in cancelled_ids
    ]
