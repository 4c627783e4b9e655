"""Tests for the match engine tiers."""

import copy

import pytest

from lidgeld.database.models import FeeStatus
from lidgeld.parsers.base import DEBIT, BankTransaction
from lidgeld.reconcile.match import (
    MatchConfidence,
    MatchResult,
    MatchRule,
    amounts_equal,
    extract_member_number,
    guess_matches,
    match_transaction,
    set_manual_match,
    sort_rules,
)
from tests.conftest import make_fee


def _txn(amount=30.0, description="", **kwargs) -> BankTransaction:
    return BankTransaction(date="2025-01-20", amount=amount, description=description, **kwargs)


@pytest.fixture
def fees():
    return [
        make_fee(id="f1", member_number="0001", amount=30.0),
        make_fee(id="f2", member_number="0002", amount=30.0),
        make_fee(id="f3", member_number="0003", amount=25.0),
    ]


class TestExtractMemberNumber:
    def test_finds_token(self):
        assert extract_member_number("Lidgeld 0007 januari") == "0007"

    def test_first_token_wins(self):
        assert extract_member_number("0003 en 0004") == "0003"

    def test_none_without_token(self):
        assert extract_member_number("Lidgeld januari") is None
        assert extract_member_number("") is None

    def test_custom_pattern(self):
        assert extract_member_number("lid L-42", r"L-\d+") == "L-42"


class TestAmountsEqual:
    def test_within_tolerance(self):
        assert amounts_equal(30.0, 30.005)

    def test_beyond_tolerance(self):
        assert not amounts_equal(30.0, 30.02)

    def test_float_noise(self):
        assert amounts_equal(0.1 + 0.2, 0.3)


class TestTiers:
    def test_member_number_and_amount_is_certain(self, fees):
        result = match_transaction(_txn(30.0, "Lidgeld 0002"), fees)
        assert result.confidence == MatchConfidence.CERTAIN
        assert result.match.id == "f2"

    def test_unique_amount_is_possible(self, fees):
        result = match_transaction(_txn(25.0, "Lidgeld"), fees)
        assert result.confidence == MatchConfidence.POSSIBLE
        assert result.match.id == "f3"

    def test_member_number_with_wrong_amount_falls_to_amount_tier(self, fees):
        result = match_transaction(_txn(25.0, "Lidgeld 0001"), fees)
        assert result.confidence == MatchConfidence.POSSIBLE
        assert result.match.id == "f3"

    def test_ambiguous_amount_is_unknown(self, fees):
        result = match_transaction(_txn(30.0, "Lidgeld"), fees)
        assert result.confidence == MatchConfidence.UNKNOWN
        assert result.match is None

    def test_no_candidate_is_unknown(self, fees):
        result = match_transaction(_txn(99.0, "Lidgeld 0001"), fees)
        assert result.confidence == MatchConfidence.UNKNOWN

    def test_two_fees_same_member_not_certain(self):
        fees = [
            make_fee(id="jan", member_number="0005"),
            make_fee(id="feb", member_number="0005", period_start="2025-02-01",
                     period_end="2025-02-28", due_date="2025-03-15"),
        ]
        result = match_transaction(_txn(30.0, "Lidgeld 0005"), fees)
        assert result.confidence == MatchConfidence.UNKNOWN

    def test_paid_fees_never_matched(self):
        fees = [make_fee(id="p", status=FeeStatus.PAID, paid_at="2025-01-10")]
        result = match_transaction(_txn(30.0, "Lidgeld 0001"), fees)
        assert result.confidence == MatchConfidence.UNKNOWN

    def test_overdue_fees_are_candidates(self):
        fees = [make_fee(id="o", status=FeeStatus.OVERDUE)]
        result = match_transaction(_txn(30.0, "Lidgeld 0001"), fees)
        assert result.confidence == MatchConfidence.CERTAIN

    def test_debit_never_matched(self, fees):
        result = match_transaction(_txn(25.0, "Lidgeld 0003", side=DEBIT), fees)
        assert result.confidence == MatchConfidence.UNKNOWN

    def test_missing_amount_is_unknown(self, fees):
        result = match_transaction(_txn(None, "Lidgeld 0003"), fees)
        assert result.confidence == MatchConfidence.UNKNOWN

    def test_tolerance_parameter(self, fees):
        result = match_transaction(_txn(25.4, "x"), fees, tolerance=0.5)
        assert result.match.id == "f3"


class TestStatementScenarios:
    def test_member_reference_picks_member(self):
        fees = [
            make_fee(id="a", member_number="0007", amount=30.0),
            make_fee(id="b", member_number="0003", amount=30.0),
        ]
        result = match_transaction(_txn(30.0, "Betaling lidgeld 0007"), fees)
        assert result.confidence == MatchConfidence.CERTAIN
        assert result.match.id == "a"

    def test_single_amount_without_reference(self):
        fees = [make_fee(id="a", amount=45.5)]
        result = match_transaction(_txn(45.5, "no member ref"), fees)
        assert result.confidence == MatchConfidence.POSSIBLE
        assert result.match.id == "a"

    def test_two_equal_amounts_without_reference(self):
        fees = [make_fee(id="a", amount=45.5), make_fee(id="b", amount=45.5)]
        result = match_transaction(_txn(45.5, "no member ref"), fees)
        assert result.confidence == MatchConfidence.UNKNOWN
        assert result.match is None


class TestGuessMatches:
    def test_one_result_per_transaction_in_order(self, fees):
        txns = [_txn(25.0), _txn(30.0, "0001"), _txn(1.0)]
        results = guess_matches(txns, fees)
        assert len(results) == 3
        assert [r.transaction for r in results] == txns
        assert [r.confidence for r in results] == [
            MatchConfidence.POSSIBLE, MatchConfidence.CERTAIN, MatchConfidence.UNKNOWN,
        ]

    def test_empty_inputs(self, fees):
        assert guess_matches([], fees) == []
        results = guess_matches([_txn(30.0, "0001")], [])
        assert results[0].confidence == MatchConfidence.UNKNOWN

    def test_deterministic(self, fees):
        txns = [_txn(25.0), _txn(30.0, "0002")]
        assert guess_matches(txns, fees) == guess_matches(txns, fees)

    def test_inputs_not_mutated(self, fees):
        txns = [_txn(25.0), _txn(30.0, "0002")]
        before_fees = copy.deepcopy(fees)
        before_txns = copy.deepcopy(txns)
        guess_matches(txns, fees)
        assert fees == before_fees
        assert txns == before_txns

    def test_matched_fee_is_a_known_open_fee(self, fees):
        ids = {f.id for f in fees}
        for result in guess_matches([_txn(25.0), _txn(30.0, "0001")], fees):
            assert result.match.id in ids


class TestMatchResult:
    def test_unknown_with_match_rejected(self, fees):
        with pytest.raises(ValueError):
            MatchResult(_txn(), fees[0], MatchConfidence.UNKNOWN)

    def test_certain_without_match_rejected(self):
        with pytest.raises(ValueError):
            MatchResult(_txn(), None, MatchConfidence.CERTAIN)

    def test_labels(self):
        assert MatchConfidence.CERTAIN.label == "Zeker"
        assert MatchConfidence.UNKNOWN.label == "Onbekend"


class TestManualMatch:
    def test_manual_choice(self, fees):
        result = match_transaction(_txn(30.0, "x"), fees)
        manual = set_manual_match(result, fees[1])
        assert manual.confidence == MatchConfidence.MANUAL
        assert manual.match.id == "f2"
        assert result.confidence == MatchConfidence.UNKNOWN

    def test_confirming_engine_guess_is_still_manual(self, fees):
        result = match_transaction(_txn(25.0), fees)
        manual = set_manual_match(result, result.match)
        assert manual.confidence == MatchConfidence.MANUAL

    def test_clearing_gives_unknown(self, fees):
        result = match_transaction(_txn(25.0), fees)
        cleared = set_manual_match(result, None)
        assert cleared.confidence == MatchConfidence.UNKNOWN
        assert cleared.match is None


class TestMatchRules:
    @pytest.fixture
    def twin_fees(self):
        return [
            make_fee(id="a", member_number="0001", amount=30.0),
            make_fee(id="b", member_number="0002", amount=30.0),
        ]

    def test_keyword_rule_resolves_ambiguous_amount(self, twin_fees):
        rule = MatchRule(name="Benali", member_number="0002", contains=("benali",))
        result = match_transaction(_txn(30.0, "Overschrijving Y. BENALI"), twin_fees, rules=[rule])
        assert result.confidence == MatchConfidence.POSSIBLE
        assert result.match.id == "b"

    def test_rule_does_not_fire_without_keyword(self, twin_fees):
        rule = MatchRule(name="Benali", member_number="0002", contains=("benali",))
        result = match_transaction(_txn(30.0, "Overschrijving"), twin_fees, rules=[rule])
        assert result.confidence == MatchConfidence.UNKNOWN

    def test_member_number_beats_rule(self, twin_fees):
        rule = MatchRule(name="Alles", member_number="0002", contains=("lidgeld",))
        result = match_transaction(_txn(30.0, "Lidgeld 0001"), twin_fees, rules=[rule])
        assert result.confidence == MatchConfidence.CERTAIN
        assert result.match.id == "a"

    def test_iban_rule(self, twin_fees):
        rule = MatchRule(name="Rekening", member_number="0001", iban="BE71096123456769")
        result = match_transaction(
            _txn(30.0, "x", iban="BE71096123456769"), twin_fees, rules=[rule],
        )
        assert result.match.id == "a"
        no_iban = match_transaction(_txn(30.0, "x"), twin_fees, rules=[rule])
        assert no_iban.confidence == MatchConfidence.UNKNOWN

    def test_rule_fee_amount_must_match(self, twin_fees):
        rule = MatchRule(name="Benali", member_number="0002", contains=("benali",))
        result = match_transaction(_txn(25.0, "benali"), twin_fees, rules=[rule])
        assert result.confidence == MatchConfidence.UNKNOWN

    def test_target_amount_criterion(self):
        rule = MatchRule(name="Dertig", member_number="0001", target_amount=30.0,
                         amount_tolerance=0.5)
        assert rule.matches(_txn(30.4))
        assert not rule.matches(_txn(31.0))
        assert not rule.matches(_txn(None))

    def test_priority_order_and_inactive_rules(self, twin_fees):
        low = MatchRule(name="laag", member_number="0001", contains=("gift",), priority=10)
        high = MatchRule(name="hoog", member_number="0002", contains=("gift",), priority=200)
        off = MatchRule(name="uit", member_number="0001", contains=("gift",),
                        priority=999, active=False)
        assert sort_rules([low, off, high]) == [high, low]
        results = guess_matches([_txn(30.0, "gift")], twin_fees, rules=[low, off, high])
        assert results[0].match.id == "b"

    def test_debit_never_matched_by_rule(self, twin_fees):
        rule = MatchRule(name="Benali", member_number="0002", contains=("benali",))
        result = match_transaction(_txn(30.0, "benali", side=DEBIT), twin_fees, rules=[rule])
        assert result.confidence == MatchConfidence.UNKNOWN


class TestMatchRuleFromDict:
    def test_full_entry(self):
        rule = MatchRule.from_dict({
            "name": "Yilmaz", "member_number": "0001", "contains": "yilmaz",
            "iban": "be71 0961 2345 6769", "amount": 30, "priority": 5,
        })
        assert rule.contains == ("yilmaz",)
        assert rule.iban == "BE71096123456769"
        assert rule.target_amount == 30.0
        assert rule.priority == 5
        assert rule.active

    def test_requires_name_and_member(self):
        with pytest.raises(ValueError, match="name and a member_number"):
            MatchRule.from_dict({"contains": ["x"]})

    def test_requires_a_criterion(self):
        with pytest.raises(ValueError, match="no criteria"):
            MatchRule.from_dict({"name": "leeg", "member_number": "0001"})
