"""Unit tests for the ownership guard and address parsing."""

import unittest

from approval_revoker.errors import InvalidAddress, NotOwner
from approval_revoker.guard import can_mutate, require_owner
from approval_revoker.models import parse_address

from fakes import OTHER, OWNER


class TestOwnershipGuard(unittest.TestCase):
    def test_same_address(self):
        self.assertTrue(can_mutate(OWNER, OWNER))

    def test_case_insensitive(self):
        self.assertTrue(can_mutate(OWNER.lower(), OWNER))
        self.assertTrue(can_mutate(OWNER, "0x" + OWNER[2:].upper()))

    def test_different_address(self):
        self.assertFalse(can_mutate(OWNER, OTHER))

    def test_missing_side(self):
        self.assertFalse(can_mutate(None, OWNER))
        self.assertFalse(can_mutate(OWNER, None))
        self.assertFalse(can_mutate(None, None))
        self.assertFalse(can_mutate("", ""))

    def test_non_addresses_never_match(self):
        self.assertFalse(can_mutate("0x", "0x"))
        self.assertFalse(can_mutate("abc", "ABC"))
        self.assertFalse(can_mutate(OWNER + "00", OWNER + "00"))

    def test_require_owner_raises(self):
        with self.assertRaises(NotOwner):
            require_owner(OWNER, OTHER)
        require_owner(OWNER, OWNER.lower())


class TestParseAddress(unittest.TestCase):
    def test_lowercase_input_is_checksummed(self):
        self.assertEqual(parse_address("  " + OWNER.lower() + "\n"), OWNER)

    def test_bad_checksum_rejected(self):
        broken = OWNER[:3] + OWNER[3].swapcase() + OWNER[4:]
        with self.assertRaises(InvalidAddress):
            parse_address(broken)

    def test_single_case_body_accepted(self):
        self.assertEqual(parse_address("0x" + OWNER[2:].upper()), OWNER)

    def test_bad_checksum_rejected_anywhere_in_body(self):
        for index in (3, 10, len(OWNER) - 1):
            char = OWNER[index]
            if not char.isalpha():
                continue
            broken = OWNER[:index] + char.swapcase() + OWNER[index + 1:]
            with self.subTest(index=index):
                with self.assertRaises(InvalidAddress):
                    parse_address(broken)

    def test_garbage_rejected(self):
        for value in ("", None, "0x123", "vitalik.eth"):
            with self.subTest(value=value):
                with self.assertRaises(InvalidAddress):
                    parse_address(value)


if __name__ == "__main__":
    unittest.main()
