"""Unit tests for the approval normaliser."""

import unittest
from datetime import datetime, timedelta, timezone

from approval_revoker.models import RiskLevel
from approval_revoker.normalizer import (
    classify_risk,
    format_units,
    is_live,
    normalize,
    normalize_all,
    to_base_units,
)
from approval_revoker.rpc import MAX_UINT256

from fakes import SPENDER_A, TOKEN, make_fact

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestRiskClassification(unittest.TestCase):
    def test_revoking_hint_is_high(self):
        self.assertIs(classify_risk("CONSIDER REVOKING"), RiskLevel.HIGH)

    def test_medium_hint(self):
        self.assertIs(classify_risk("MEDIUM RISK"), RiskLevel.MEDIUM)

    def test_low_and_missing_hints(self):
        for hint in ("LOW RISK", "", None, "SOMETHING ELSE"):
            with self.subTest(hint=hint):
                self.assertIs(classify_risk(hint), RiskLevel.LOW)

    def test_log_facts_default_to_low(self):
        """Facts from the log source carry no hint."""
        approval = normalize(make_fact(TOKEN, SPENDER_A, "5", source="logs"), NOW)
        self.assertIs(approval.risk_level, RiskLevel.LOW)


class TestAllowance(unittest.TestCase):
    def test_unlimited_sentinel(self):
        approval = normalize(make_fact(TOKEN, SPENDER_A, "UNLIMITED", allowance_scaled=True), NOW)
        self.assertTrue(approval.is_unlimited)
        self.assertEqual(approval.formatted_allowance, "Unlimited")
        self.assertEqual(approval.allowance_raw, str(MAX_UINT256))

    def test_max_uint256_is_unlimited(self):
        approval = normalize(make_fact(TOKEN, SPENDER_A, str(MAX_UINT256)), NOW)
        self.assertTrue(approval.is_unlimited)

    def test_just_below_max_is_not_unlimited(self):
        approval = normalize(make_fact(TOKEN, SPENDER_A, str(MAX_UINT256 - 1)), NOW)
        self.assertFalse(approval.is_unlimited)
        self.assertEqual(approval.allowance_raw, str(MAX_UINT256 - 1))

    def test_raw_allowance_formatted_with_decimals(self):
        approval = normalize(make_fact(TOKEN, SPENDER_A, "1234567890000000000"), NOW)
        self.assertEqual(approval.formatted_allowance, "1.23456789")

    def test_scaled_allowance_converted_to_base_units(self):
        fact = make_fact(TOKEN, SPENDER_A, "100.5", decimals=6, allowance_scaled=True)
        approval = normalize(fact, NOW)
        self.assertEqual(approval.allowance_raw, "100500000")
        self.assertEqual(approval.formatted_allowance, "100.5")

    def test_format_units_is_exact_for_large_values(self):
        self.assertEqual(
            format_units(MAX_UINT256 - 1, 18),
            "115792089237316195423570985008687907853269984665640564039457.584007913129639934",
        )
        self.assertEqual(format_units(0, 18), "0")
        self.assertEqual(format_units(7, 0), "7")

    def test_to_base_units_rejects_garbage(self):
        with self.assertRaises(ValueError):
            to_base_units("lots", 18)

    def test_zero_allowance_is_not_live(self):
        self.assertFalse(is_live(normalize(make_fact(TOKEN, SPENDER_A, "0"), NOW)))
        facts = [make_fact(TOKEN, SPENDER_A, "0"), make_fact(TOKEN, SPENDER_A, "1")]
        self.assertEqual(len(normalize_all(facts, NOW)), 1)


class TestDefaults(unittest.TestCase):
    def test_age_in_days(self):
        fact = make_fact(TOKEN, SPENDER_A, timestamp=NOW - timedelta(days=10, hours=5))
        self.assertEqual(normalize(fact, NOW).age_in_days, 10)

    def test_unknown_timestamp_gives_zero_age(self):
        self.assertEqual(normalize(make_fact(TOKEN, SPENDER_A), NOW).age_in_days, 0)

    def test_future_timestamp_clamped_to_zero(self):
        fact = make_fact(TOKEN, SPENDER_A, timestamp=NOW + timedelta(days=2))
        self.assertEqual(normalize(fact, NOW).age_in_days, 0)

    def test_value_at_risk_defaults_to_zero(self):
        self.assertEqual(normalize(make_fact(TOKEN, SPENDER_A), NOW).value_at_risk_usd, 0.0)
        fact = make_fact(TOKEN, SPENDER_A, value_at_risk_usd=12.5)
        self.assertEqual(normalize(fact, NOW).value_at_risk_usd, 12.5)


if __name__ == "__main__":
    unittest.main()
