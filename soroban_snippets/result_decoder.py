# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Decoding of typed outcomes from transaction results.

The return value of a Soroban invocation is buried in the result metadata::

    TransactionMeta
      -> v3 (or v4)
        -> soroban_meta
          -> return_value (an SCVal)

What the return value means depends on the submitted operation: a contract
call returns an arbitrary value, uploading WASM returns the code hash and
creating a contract returns its address. :func:`decode` walks the path and
interprets the value according to an :class:`OutcomeKind`, which defaults to
the kind recorded when the transaction was submitted.

Examples:
    Reading a counter::

        result = await submitter.submit_and_await(signed)
        outcome = decode(result)
        print(outcome.value)   # 1000

    Installing WASM::

        outcome = decode(result)
        outcome.kind           # OutcomeKind.HASH
        outcome.value          # "5f2b...e1"

Decoding is pure; decoding the same result again yields an equal outcome.
"""

from __future__ import annotations

import base64
import struct
import unittest
from dataclasses import dataclass
from typing import Any, Optional

from stellar_sdk import Address, scval
from stellar_sdk import xdr as stellar_xdr

from .errors import TransactionFailedError, UnexpectedResultShapeError
from .operations import OutcomeKind
from .submission import Failed, Success, TransactionResult, Unknown

T = stellar_xdr.SCValType


@dataclass(frozen=True)
class DecodedOutcome:
    kind: OutcomeKind
    value: Any
    raw: Optional[stellar_xdr.SCVal] = None


def to_native(value: stellar_xdr.SCVal) -> Any:
    """Convert an SCVal into plain Python values.

    Integers of every width become ``int``, symbols and strings ``str``,
    bytes ``bytes``, addresses their strkey, vectors lists and maps dicts.
    Values without a native counterpart are returned unchanged.
    """
    if value.type == T.SCV_VOID:
        return None
    if value.type == T.SCV_BOOL:
        return scval.from_bool(value)
    if value.type == T.SCV_U32:
        return scval.from_uint32(value)
    if value.type == T.SCV_I32:
        return scval.from_int32(value)
    if value.type == T.SCV_U64:
        return scval.from_uint64(value)
    if value.type == T.SCV_I64:
        return scval.from_int64(value)
    if value.type == T.SCV_TIMEPOINT:
        return scval.from_timepoint(value)
    if value.type == T.SCV_DURATION:
        return scval.from_duration(value)
    if value.type == T.SCV_U128:
        return scval.from_uint128(value)
    if value.type == T.SCV_I128:
        return scval.from_int128(value)
    if value.type == T.SCV_U256:
        return scval.from_uint256(value)
    if value.type == T.SCV_I256:
        return scval.from_int256(value)
    if value.type == T.SCV_BYTES:
        return scval.from_bytes(value)
    if value.type == T.SCV_STRING:
        raw = value.str.sc_string
        return raw.decode() if isinstance(raw, bytes) else raw
    if value.type == T.SCV_SYMBOL:
        return scval.from_symbol(value)
    if value.type == T.SCV_ADDRESS:
        return Address.from_xdr_sc_address(value.address).address
    if value.type == T.SCV_VEC:
        return [to_native(x) for x in (value.vec.sc_vec if value.vec else [])]
    if value.type == T.SCV_MAP:
        entries = value.map.sc_map if value.map else []
        return {to_native_key(x.key): to_native(x.val) for x in entries}
    return value


def to_native_key(key: stellar_xdr.SCVal) -> Any:
    """Like :func:`to_native`, but always hashable."""
    native = to_native(key)
    # Lists and dicts cannot be dictionary keys
    if isinstance(native, list):
        return tuple(native)
    if isinstance(native, dict):
        return key.to_xdr()
    return native


def return_value(meta: stellar_xdr.TransactionMeta) -> stellar_xdr.SCVal:
    """Follow ``TransactionMeta -> v3/v4 -> soroban_meta -> return_value``."""
    if meta.v == 3:
        soroban_meta = meta.v3.soroban_meta
    elif meta.v == 4:
        soroban_meta = meta.v4.soroban_meta
    else:
        raise UnexpectedResultShapeError(
            f"Transaction meta v{meta.v} carries no Soroban return value"
        )
    if soroban_meta is None or soroban_meta.return_value is None:
        raise UnexpectedResultShapeError("Transaction meta has no Soroban return value")
    return soroban_meta.return_value


def decode(
    result: TransactionResult, expect: Optional[OutcomeKind] = None
) -> DecodedOutcome:
    """
    Extract the typed outcome of a settled transaction.

    :param result: The result returned by the submitter
    :param expect: Overrides the kind recorded at submission
    :raises TransactionFailedError: If ``result`` is a failure
    :raises UnexpectedResultShapeError: If the metadata does not hold a value
        of the expected kind
    """
    if isinstance(result, Failed):
        raise TransactionFailedError(result.tx_hash, result.result_code)
    if isinstance(result, Unknown):
        raise UnexpectedResultShapeError(
            f"Transaction {result.tx_hash} has not settled, nothing to decode"
        )

    kind = expect or result.expected
    if kind == OutcomeKind.NONE:
        return DecodedOutcome(kind, None)

    try:
        meta = result.meta()
    except (ValueError, EOFError, struct.error) as e:
        raise UnexpectedResultShapeError(f"Malformed transaction meta: {e}") from e
    value = return_value(meta)

    if kind == OutcomeKind.SCALAR:
        return DecodedOutcome(kind, to_native(value), value)
    if kind == OutcomeKind.HASH:
        if value.type != T.SCV_BYTES:
            raise UnexpectedResultShapeError(
                f"Expected a hash, found {value.type.name}"
            )
        return DecodedOutcome(kind, scval.from_bytes(value).hex(), value)
    if (
        value.type != T.SCV_ADDRESS
        or value.address.type != stellar_xdr.SCAddressType.SC_ADDRESS_TYPE_CONTRACT
    ):
        raise UnexpectedResultShapeError(
            f"Expected a contract address, found {value.type.name}"
        )
    return DecodedOutcome(kind, Address.from_xdr_sc_address(value.address).address, value)


def _meta_xdr_with_return_value(value: stellar_xdr.SCVal) -> str:
    """Base64 ``TransactionMeta`` v3 holding only ``value`` as return value."""
    raw = struct.pack(">iiIIII", 3, 0, 0, 0, 0, 1)
    raw += struct.pack(">iI", 0, 0) + value.to_xdr_bytes() + struct.pack(">I", 0)
    return base64.b64encode(raw).decode()


class Test(unittest.TestCase):
    CONTRACT = "CDLZFC3SYJYDZT7K67VZ75HPJVIEUVNIXF47ZG2FB2RMQQVU2HHGCYSC"

    def success(self, value: stellar_xdr.SCVal, expected: OutcomeKind) -> Success:
        return Success("ab" * 32, 10, _meta_xdr_with_return_value(value), None, expected)

    def test_scalar(self):
        result = self.success(scval.to_uint32(1000), OutcomeKind.SCALAR)
        outcome = decode(result)
        self.assertEqual(outcome.kind, OutcomeKind.SCALAR)
        self.assertEqual(outcome.value, 1000)
        self.assertEqual(decode(result), outcome)

    def test_hash(self):
        wasm_hash = bytes(range(32))
        result = self.success(scval.to_bytes(wasm_hash), OutcomeKind.HASH)
        self.assertEqual(decode(result).value, wasm_hash.hex())

    def test_address(self):
        result = self.success(
            scval.to_address(Address(self.CONTRACT)), OutcomeKind.ADDRESS
        )
        self.assertEqual(decode(result).value, self.CONTRACT)

    def test_expectation_override(self):
        result = self.success(scval.to_bytes(b"\x01" * 32), OutcomeKind.HASH)
        self.assertEqual(decode(result, OutcomeKind.SCALAR).value, b"\x01" * 32)
        self.assertIsNone(decode(result, OutcomeKind.NONE).value)

    def test_shape_mismatch(self):
        result = self.success(scval.to_uint32(7), OutcomeKind.HASH)
        with self.assertRaises(UnexpectedResultShapeError):
            decode(result)
        with self.assertRaises(UnexpectedResultShapeError):
            decode(result, OutcomeKind.ADDRESS)

    def test_malformed_meta(self):
        result = Success("ab" * 32, 10, "AAAAAw==", None, OutcomeKind.SCALAR)
        with self.assertRaises(UnexpectedResultShapeError):
            decode(result)

    def test_failed_and_unknown(self):
        code = stellar_xdr.TransactionResultCode.txFAILED
        with self.assertRaises(TransactionFailedError):
            decode(Failed("ab" * 32, code))
        with self.assertRaises(UnexpectedResultShapeError):
            decode(Unknown("ab" * 32, 3))

    def test_to_native(self):
        value = scval.to_vec(
            [
                scval.to_symbol("count"),
                scval.to_int128(-5),
                scval.to_bool(True),
                scval.to_void(),
            ]
        )
        self.assertEqual(to_native(value), ["count", -5, True, None])
        mapping = scval.to_map({scval.to_symbol("a"): scval.to_uint64(1)})
        self.assertEqual(to_native(mapping), {"a": 1})
