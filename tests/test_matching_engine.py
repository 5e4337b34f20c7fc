from datetime import datetime

import pytest

from booking_recon.matching_engine import BookingMatcher, ClaimTracker, find_orphaned
from booking_recon.models import BookingSource, BookingStatus, MatchStatus, Severity
from booking_recon.utils import token_similarity
from conftest import make_external, make_internal

JUNE_1 = datetime(2025, 6, 1)


def scenario_external(**overrides):
    values = dict(booking_ref='GYG-1001', customer_name='John Doe', tour_date=JUNE_1,
                  tour_name='Ubud Tour', total_price=100.0, currency='USD', number_of_adult=2)
    values.update(overrides)
    return make_external(**values)


def scenario_internal(**overrides):
    values = dict(booking_ref='GYG-1001', customer_name='John Doe', tour_date=JUNE_1,
                  tour_name='Ubud Tour', total_price=100.0, currency='USD', number_of_adult=2)
    values.update(overrides)
    return make_internal(**values)


class TestClaimTracker:
    def test_claim_once(self, caplog):
        tracker = ClaimTracker()
        assert tracker.claim(0, 7)
        assert not tracker.claim(1, 7)
        assert tracker.claimed_by == {7: 0}
        assert 'already claimed by external 0' in caplog.text
        assert tracker.is_claimed(7)
        assert tracker.get_usage_summary() == {'claimed_internal': 1, 'exact_claims': 1, 'fuzzy_claims': 0}

    def test_available_preserves_order(self):
        tracker = ClaimTracker()
        records = [make_internal(id=1), make_internal(id=2), make_internal(id=3)]
        tracker.claim(0, 2, fuzzy=True)
        assert [r.id for r in tracker.available(records)] == [1, 3]


class TestScenarios:
    def test_perfect_match(self):
        result = BookingMatcher().match([scenario_external()], [scenario_internal()])['results'][0]

        assert result.status == MatchStatus.PERFECT
        assert result.confidence == 1.0
        assert result.discrepancies == ()

    def test_price_zero_parser_defect(self):
        result = BookingMatcher().match([scenario_external()], [scenario_internal(total_price=0.0)])['results'][0]

        assert result.status == MatchStatus.PARTIAL
        assert len(result.discrepancies) == 1
        discrepancy = result.discrepancies[0]
        assert discrepancy.field == 'total_price'
        assert discrepancy.severity == Severity.LOW
        assert discrepancy.note == 'Price not extracted from email (Trip.com issue)'
        assert result.confidence == pytest.approx(0.9)

    def test_ambiguous_candidates(self):
        scores = {1: 0.82, 2: 0.74}
        matcher = BookingMatcher(scorer=lambda external, internal: scores[internal.id])
        internal = [scenario_internal(id=1, booking_ref='BST-1'), scenario_internal(id=2, booking_ref='BST-2')]

        outcome = matcher.match([scenario_external(booking_ref='GYG-XYZ')], internal)
        result = outcome['results'][0]

        assert result.status == MatchStatus.AMBIGUOUS
        assert result.confidence == pytest.approx(0.82)
        assert result.internal is None
        assert result.note == 'Multiple potential matches found (top: 82.0%, second: 74.0%)'
        assert outcome['unmatched'] == [result.external]

    def test_missing_without_candidates(self):
        external = scenario_external(booking_ref='GYG-2002', tour_date=datetime(2025, 6, 2))
        result = BookingMatcher().match([external], [scenario_internal()])['results'][0]

        assert result.status == MatchStatus.MISSING
        assert result.confidence == 0.0
        assert result.note == 'No candidates found (different date or source)'

    def test_other_channel_is_not_a_candidate(self):
        external = scenario_external(booking_ref='VIA-1', source=BookingSource.VIATOR)
        result = BookingMatcher().match([external], [scenario_internal()])['results'][0]
        assert result.status == MatchStatus.MISSING
        assert result.confidence == 0.0


class TestFuzzyPhase:
    def test_accepts_high_scoring_candidate(self):
        external = scenario_external(booking_ref='GYG-9999')
        internal = scenario_internal(booking_ref='')

        result = BookingMatcher().match([external], [internal])['results'][0]

        assert result.internal is internal
        assert result.status == MatchStatus.PARTIAL
        assert [d.field for d in result.discrepancies] == ['booking_ref']
        assert result.note == 'Fuzzy matched with 100.0% confidence'

    def test_low_scoring_candidate_is_missing(self):
        external = scenario_external(booking_ref='GYG-9999')

        result = BookingMatcher().match([external], [scenario_internal()])['results'][0]

        assert result.status == MatchStatus.MISSING
        assert result.confidence == pytest.approx(0.6)
        assert result.note == 'Best match only 60.0% confident'

    def test_single_candidate_is_never_ambiguous(self):
        matcher = BookingMatcher(scorer=lambda external, internal: 0.75)
        result = matcher.match([scenario_external(booking_ref='X')], [scenario_internal()])['results'][0]
        assert result.status == MatchStatus.MISSING

    def test_scorer_output_is_clamped(self):
        matcher = BookingMatcher(scorer=lambda external, internal: 3.0)
        result = matcher.match([scenario_external(booking_ref='X')], [scenario_internal()])['results'][0]
        assert 0.0 <= result.confidence <= 1.0
        assert result.note == 'Fuzzy matched with 100.0% confidence'

    def test_failing_scorer_marks_record_missing(self):
        def broken(external, internal):
            raise RuntimeError('boom')

        outcome = BookingMatcher(scorer=broken).match([scenario_external(booking_ref='X')], [scenario_internal()])
        result = outcome['results'][0]

        assert result.status == MatchStatus.MISSING
        assert result.note == 'Matching failed: boom'
        assert len(outcome['unmatched']) == 1

    def test_alternative_similarity(self):
        matcher = BookingMatcher(similarity=token_similarity)
        result = matcher.match([scenario_external()], [scenario_internal()])['results'][0]
        assert result.status == MatchStatus.PERFECT


class TestMatchProperties:
    def test_one_result_per_external_record_in_order(self):
        externals = [scenario_external(booking_ref=f"GYG-{i}") for i in range(4)]
        internals = [scenario_internal(id=i, booking_ref=f"GYG-{i}") for i in (2, 0)]

        results = BookingMatcher().match(externals, internals)['results']

        assert [r.external.booking_ref for r in results] == ['GYG-0', 'GYG-1', 'GYG-2', 'GYG-3']

    def test_internal_record_claimed_at_most_once(self):
        externals = [scenario_external(), scenario_external()]

        outcome = BookingMatcher().match(externals, [scenario_internal()])
        first, second = outcome['results']

        assert first.status == MatchStatus.PERFECT
        assert second.internal is None
        assert second.status == MatchStatus.MISSING

    def test_exact_reference_takes_precedence(self):
        by_reference = scenario_internal(id=1, tour_date=datetime(2025, 6, 20))
        lookalike = scenario_internal(id=2, booking_ref='BST-77')

        result = BookingMatcher().match([scenario_external()], [lookalike, by_reference])['results'][0]

        assert result.internal.id == 1
        assert [d.field for d in result.discrepancies] == ['tour_date']
        assert result.discrepancies[0].external_value == '2025-06-01'

    def test_reference_normalization(self):
        result = BookingMatcher().match(
            [scenario_external(booking_ref='gyg 1001')], [scenario_internal()]
        )['results'][0]
        assert result.status == MatchStatus.PERFECT

    def test_perfect_iff_no_discrepancies(self):
        externals = [scenario_external(booking_ref=f"R{i}") for i in range(3)]
        internals = [
            scenario_internal(id=0, booking_ref='R0'),
            scenario_internal(id=1, booking_ref='R1', number_of_adult=5),
            scenario_internal(id=2, booking_ref='R2', currency='IDR'),
        ]
        for result in BookingMatcher().match(externals, internals)['results']:
            assert (result.status == MatchStatus.PERFECT) == (len(result.discrepancies) == 0)

    def test_matching_is_deterministic(self):
        externals = [scenario_external(booking_ref='GYG-9999'), scenario_external()]
        internals = [scenario_internal(id=1), scenario_internal(id=2, booking_ref='')]
        matcher = BookingMatcher()
        assert matcher.match(externals, internals) == matcher.match(externals, internals)

    def test_confidence_within_bounds(self):
        externals = [scenario_external(booking_ref=f"R{i}", customer_name='Someone Else') for i in range(3)]
        internals = [scenario_internal(id=i, booking_ref=f"R{i}", total_price=999.0, currency='EUR',
                                       number_of_adult=9, tour_name='Different Thing',
                                       customer_email='x@y.z', phone_number='1')
                     for i in range(3)]
        for result in BookingMatcher().match(externals, internals)['results']:
            assert 0.0 <= result.confidence <= 1.0


class TestCompare:
    def test_reversed_name_is_not_a_discrepancy(self):
        result = BookingMatcher().compare(scenario_external(), scenario_internal(customer_name='Doe, John'))
        assert result.status == MatchStatus.PERFECT

    def test_name_mismatch_severity(self):
        result = BookingMatcher().compare(scenario_external(), scenario_internal(customer_name='Maria Garcia'))
        discrepancy = result.discrepancies[0]
        assert discrepancy.field == 'customer_name'
        assert discrepancy.severity == Severity.HIGH

    def test_placeholder_email_is_skipped(self):
        external = scenario_external(customer_email='john@example.com')
        internal = scenario_internal(customer_email='no-email@bookings.local')
        assert BookingMatcher().compare(external, internal).discrepancies == ()

    def test_email_difference(self):
        external = scenario_external(customer_email='John@Example.com')
        assert BookingMatcher().compare(external, scenario_internal()).discrepancies == ()

        result = BookingMatcher().compare(scenario_external(customer_email='other@example.com'), scenario_internal())
        assert [d.field for d in result.discrepancies] == ['customer_email']
        assert result.discrepancies[0].severity == Severity.MEDIUM

    def test_price_tolerance(self):
        matcher = BookingMatcher()
        assert matcher.compare(scenario_external(), scenario_internal(total_price=100.9)).discrepancies == ()

        result = matcher.compare(scenario_external(), scenario_internal(total_price=102.0))
        discrepancy = result.discrepancies[0]
        assert discrepancy.field == 'total_price'
        assert discrepancy.severity == Severity.HIGH
        assert discrepancy.external_value == '100.0 USD'
        assert discrepancy.internal_value == '102.0 USD'

    def test_unspecified_children_are_ignored(self):
        matcher = BookingMatcher()
        assert matcher.compare(scenario_external(number_of_child=2), scenario_internal()).discrepancies == ()

        result = matcher.compare(scenario_external(number_of_child=2), scenario_internal(number_of_child=1))
        assert [d.field for d in result.discrepancies] == ['number_of_child']

    def test_discrepancy_order_and_confidence(self):
        internal = scenario_internal(number_of_adult=3, currency='IDR', phone_number='+62 811')
        external = scenario_external(phone_number='+62 822')

        result = BookingMatcher().compare(external, internal)

        assert [d.field for d in result.discrepancies] == ['phone_number', 'currency', 'number_of_adult']
        assert result.confidence == pytest.approx(0.7)


def test_find_orphaned():
    claimed = scenario_internal(id=1)
    free = scenario_internal(id=2, booking_ref='BST-2')
    cancelled = scenario_internal(id=3, booking_ref='BST-3', status=BookingStatus.CANCELLED)

    results = BookingMatcher().match([scenario_external()], [claimed, free, cancelled])['results']

    assert find_orphaned([claimed, free, cancelled], results) == [free]


def test_find_orphaned_skips_unconfirmed_and_known_cancellations():
    fresh = scenario_internal(id=4, booking_ref='BST-4', status=BookingStatus.NEW)
    ready = scenario_internal(id=5, booking_ref='BST-5')
    flagged = scenario_internal(id=6, booking_ref='BST-6')

    assert find_orphaned([fresh, ready, flagged], [], cancelled_records=[flagged]) == [ready]
