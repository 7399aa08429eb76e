"""Encoding tests for SpendPermissionManager call payloads."""

import inspect
import unittest
from dataclasses import replace

from eth_utils import keccak

from core.models import SpendAuthorization
from execution_adapter.ethereum import adapter
from execution_adapter.ethereum.adapter import (
    EXCEEDED_SPEND_PERMISSION,
    METHOD_SELECTORS,
    AdapterError,
    decode_bool,
    decode_call,
    encode_approve_with_signature,
    encode_is_approved,
    encode_revert,
    encode_spend,
    permission_key,
    permission_tuple,
    revert_selector,
)

MANAGER = "0xf85210B21cC50302F477BA56686d2019dC9b67Ad"


def _authorization(**overrides) -> SpendAuthorization:
    values = dict(
        authorization_id=1,
        plan_id=1,
        account="0x" + "11" * 20,
        spender="0x" + "22" * 20,
        token="0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE",
        allowance=10**15,
        period=86_400,
        start=0,
        end=2**40,
        salt=42,
        signature="0x" + "ab" * 65,
    )
    values.update(overrides)
    return SpendAuthorization(**values)


class AdapterEncodingTests(unittest.TestCase):
    def test_selectors_match_solidity_signatures(self) -> None:
        permission = "(address,address,address,uint160,uint48,uint48,uint48,uint256,bytes)"
        self.assertEqual(METHOD_SELECTORS["isApproved"], keccak(text=f"isApproved({permission})")[:4])
        self.assertEqual(
            METHOD_SELECTORS["approveWithSignature"],
            keccak(text=f"approveWithSignature({permission},bytes)")[:4],
        )
        self.assertEqual(METHOD_SELECTORS["spend"], keccak(text=f"spend({permission},uint160)")[:4])

    def test_payloads_are_deterministic(self) -> None:
        first = encode_spend(MANAGER, _authorization(), 60)
        second = encode_spend(MANAGER, _authorization(), 60)

        self.assertEqual(first, second)
        self.assertEqual(first.to_address, MANAGER)
        self.assertEqual(first.value_wei, 0)
        self.assertTrue(first.data.startswith("0x" + METHOD_SELECTORS["spend"].hex()))

    def test_spend_carries_value(self) -> None:
        method, args = decode_call(encode_spend(MANAGER, _authorization(), 12345).data)

        self.assertEqual(method, "spend")
        self.assertEqual(args[1], 12345)
        self.assertEqual(permission_key(args[0]), permission_key(permission_tuple(_authorization())))

    def test_approval_carries_signature(self) -> None:
        method, args = decode_call(encode_approve_with_signature(MANAGER, _authorization()).data)

        self.assertEqual(method, "approveWithSignature")
        self.assertEqual(args[1], bytes.fromhex("ab" * 65))

    def test_is_approved_is_permission_only(self) -> None:
        method, args = decode_call(encode_is_approved(MANAGER, _authorization()).data)

        self.assertEqual(method, "isApproved")
        self.assertEqual(len(args), 1)

    def test_rejects_unencodable_authorizations(self) -> None:
        with self.assertRaises(AdapterError):
            encode_approve_with_signature(MANAGER, _authorization(signature=""))
        with self.assertRaises(AdapterError):
            encode_spend(MANAGER, _authorization(), 0)
        with self.assertRaises(AdapterError):
            encode_is_approved(MANAGER, _authorization(account="not-an-address"))
        with self.assertRaises(AdapterError):
            encode_is_approved(MANAGER, _authorization(extra_data="0xzz"))
        with self.assertRaises(AdapterError):
            encode_is_approved("", _authorization())
        with self.assertRaises(AdapterError):
            encode_spend(MANAGER, _authorization(allowance=-1), 1)

    def test_permission_key_ignores_address_case(self) -> None:
        lower = _authorization(token="0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee")
        self.assertEqual(
            permission_key(permission_tuple(lower)),
            permission_key(permission_tuple(_authorization())),
        )
        self.assertNotEqual(
            permission_key(permission_tuple(replace(lower, salt=43))),
            permission_key(permission_tuple(lower)),
        )

    def test_decode_bool(self) -> None:
        self.assertTrue(decode_bool(b"\x00" * 31 + b"\x01"))
        self.assertFalse(decode_bool(b"\x00" * 32))
        with self.assertRaises(AdapterError):
            decode_bool(b"\x01")

    def test_revert_selector(self) -> None:
        data = encode_revert(EXCEEDED_SPEND_PERMISSION, ("uint256", "uint256"), (2, 1))

        self.assertEqual(revert_selector(data), EXCEEDED_SPEND_PERMISSION)
        self.assertIsNone(revert_selector(None))
        self.assertIsNone(revert_selector("0x"))
        self.assertIsNone(revert_selector("0xzz"))

    def test_unknown_selector_rejected(self) -> None:
        with self.assertRaises(AdapterError):
            decode_call("0xdeadbeef")

    def test_adapter_has_no_signing_dependency(self) -> None:
        source = inspect.getsource(adapter)
        self.assertNotIn("eth_account", source)
        self.assertNotIn("web3", source)


if __name__ == "__main__":
    unittest.main()
