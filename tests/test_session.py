"""Tests for the session controller: scan lifecycle, stale results and guarded revocation."""

import unittest

from approval_revoker.chains import get_chain
from approval_revoker.errors import InvalidAddress, InvalidResponseShape, NoTargets, NotOwner
from approval_revoker.models import RiskLevel, approval_key
from approval_revoker.revocation import JobStatus
from approval_revoker.session import Session

from fakes import (
    OTHER,
    OWNER,
    SPENDER_A,
    SPENDER_B,
    TOKEN,
    TOKEN_2,
    FakeCollector,
    FakeSigner,
    make_fact,
)

ETH = get_chain(1)
BASE = get_chain("base-mainnet")


def owner_facts():
    return [
        make_fact(TOKEN, SPENDER_B, "100.5", decimals=6, allowance_scaled=True, source="api"),
        make_fact(TOKEN, SPENDER_A, "UNLIMITED", allowance_scaled=True,
                  risk_hint="CONSIDER REVOKING", source="api"),
    ]


class TestScan(unittest.TestCase):
    def test_api_scenario_orders_high_first(self):
        session = Session(ETH, FakeCollector({OWNER: owner_facts()}))
        result = session.scan(OWNER.lower())
        self.assertTrue(result.applied)
        self.assertEqual(session.context.active_address, OWNER)
        levels = [a.risk_level for a in session.registry.filter_by_risk("all")]
        self.assertEqual(levels, [RiskLevel.HIGH, RiskLevel.LOW])

    def test_duplicate_facts_collapse(self):
        facts = [make_fact(TOKEN, SPENDER_A, "1"), make_fact(TOKEN.lower(), SPENDER_A, "2")]
        session = Session(ETH, FakeCollector({OWNER: facts}))
        session.scan(OWNER)
        self.assertEqual(len(session.registry), 1)
        self.assertEqual(next(iter(session.registry)).allowance_raw, "2")

    def test_invalid_input(self):
        collector = FakeCollector({})
        session = Session(ETH, collector)
        with self.assertRaises(InvalidAddress):
            session.scan("not an address")
        self.assertIsNone(session.context.active_address)
        self.assertEqual(collector.calls, [])

    def test_failed_rescan_keeps_registry(self):
        collector = FakeCollector({OWNER: owner_facts()})
        session = Session(ETH, collector)
        session.scan(OWNER)
        before = list(session.registry)
        collector.responses[OWNER] = InvalidResponseShape("no items")
        with self.assertRaises(InvalidResponseShape):
            session.scan(OWNER)
        self.assertEqual(list(session.registry), before)

    def test_stale_scan_is_discarded(self):
        other_facts = [make_fact(TOKEN_2, SPENDER_A, "9")]
        collector = FakeCollector({OWNER: owner_facts(), OTHER: other_facts})
        session = Session(ETH, collector)
        # a newer scan for another address finishes while the first is in flight
        collector.before = lambda address: session.scan(OTHER)
        stale = session.scan(OWNER)
        self.assertFalse(stale.applied)
        self.assertEqual(session.context.active_address, OTHER)
        self.assertEqual([a.token_address for a in session.registry], [TOKEN_2])
        self.assertEqual(session.registry.target, (OTHER, 1))

    def test_address_change_clears_selection(self):
        collector = FakeCollector({OWNER: owner_facts(), OTHER: InvalidResponseShape("x")})
        session = Session(ETH, collector)
        session.scan(OWNER)
        session.registry.select_where("all")
        with self.assertRaises(InvalidResponseShape):
            session.scan(OTHER)
        self.assertEqual(session.registry.selected_keys(), [])
        self.assertEqual(len(session.registry), 2)

    def test_chain_switch_clears_selection(self):
        session = Session(ETH, FakeCollector({OWNER: owner_facts()}))
        session.scan(OWNER)
        session.registry.select_where("all")
        session.switch_chain(BASE)
        self.assertEqual(session.registry.selected_keys(), [])
        self.assertEqual(session.context.active_chain, BASE)


class TestConnectAndRevoke(unittest.TestCase):
    def test_connect_scans_own_wallet(self):
        collector = FakeCollector({OWNER: owner_facts()})
        session = Session(ETH, collector)
        session.connect(FakeSigner(OWNER.lower()))
        self.assertEqual(session.context.connected_address, OWNER)
        self.assertEqual(session.context.scan_address, OWNER)
        self.assertEqual(collector.calls, [OWNER])
        self.assertTrue(session.can_revoke)

    def test_connect_after_manual_scan_keeps_target(self):
        collector = FakeCollector({OTHER: []})
        session = Session(ETH, collector)
        session.scan(OTHER)
        session.connect(FakeSigner(OWNER))
        self.assertEqual(collector.calls, [OTHER])
        self.assertFalse(session.can_revoke)

    def test_revoke_selected(self):
        session = Session(ETH, FakeCollector({OWNER: owner_facts()}))
        signer = FakeSigner()
        session.connect(signer)
        session.registry.select_where("high")
        outcome = session.revoke_selected()
        self.assertIs(outcome.status, JobStatus.COMPLETED)
        self.assertEqual(outcome.succeeded, [approval_key(1, TOKEN, SPENDER_A)])
        self.assertEqual([a.risk_level for a in session.registry], [RiskLevel.LOW])

    def test_viewing_someone_else_is_read_only(self):
        session = Session(ETH, FakeCollector({OTHER: owner_facts()}))
        session.connect(FakeSigner(OWNER), scan=False)
        session.scan(OTHER)
        session.registry.select_where("all")
        with self.assertRaises(NotOwner):
            session.revoke_selected()
        self.assertEqual(len(session.registry.selected_keys()), 2)

    def test_registry_of_previous_target_cannot_be_revoked(self):
        collector = FakeCollector({OTHER: owner_facts(), OWNER: InvalidResponseShape("x")})
        session = Session(ETH, collector)
        session.connect(FakeSigner(OWNER), scan=False)
        session.scan(OTHER)
        with self.assertRaises(InvalidResponseShape):
            session.scan(OWNER)
        self.assertTrue(session.can_revoke)
        with self.assertRaises(NotOwner):
            session.revoke_selected()

    def test_nothing_selected(self):
        session = Session(ETH, FakeCollector({OWNER: owner_facts()}))
        session.connect(FakeSigner())
        with self.assertRaises(NoTargets):
            session.revoke_selected()


if __name__ == "__main__":
    unittest.main()
