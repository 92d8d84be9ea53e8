# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Decoding of contract spec records.

A contract describes its interface (functions, structs, unions, enums and
errors) in the ``contractspecv0`` custom section of its WASM as back-to-back
``SCSpecEntry`` XDR records. The section carries no record count and no
record lengths.

:func:`decode_contract_spec` finds record boundaries by probing: starting at
the current offset it tries lengths 1, 2, 3, ... until a slice parses, accepts
that record and moves on. It stops at the end of the buffer or at the first
offset where no length parses, returning what it found so far. This costs
O(n^2) parse attempts in the worst case.

:func:`decode_contract_spec_stream` reads the same records in a single pass
with one XDR unpacker, relying on every record being self-delimiting.
"""

import logging
import struct
import unittest
from typing import List

from stellar_sdk import xdr as stellar_xdr
from xdrlib3 import Unpacker

logger = logging.getLogger(__name__)

PARSE_ERRORS = (EOFError, ValueError, struct.error)


def decode_contract_spec(buffer: bytes) -> List[stellar_xdr.SCSpecEntry]:
    entries: List[stellar_xdr.SCSpecEntry] = []
    offset = 0
    while offset < len(buffer):
        for length in range(1, len(buffer) - offset + 1):
            try:
                entry = stellar_xdr.SCSpecEntry.from_xdr_bytes(
                    buffer[offset : offset + length]
                )
            except PARSE_ERRORS:
                continue
            entries.append(entry)
            offset += length
            break
        else:
            logger.warning(
                "no spec entry parses at offset %s, %s bytes left undecoded",
                offset,
                len(buffer) - offset,
            )
            break
    return entries


def decode_contract_spec_stream(buffer: bytes) -> List[stellar_xdr.SCSpecEntry]:
    entries: List[stellar_xdr.SCSpecEntry] = []
    unpacker = Unpacker(buffer)
    while unpacker.get_position() < len(buffer):
        position = unpacker.get_position()
        try:
            entries.append(stellar_xdr.SCSpecEntry.unpack(unpacker))
        except PARSE_ERRORS:
            logger.warning(
                "no spec entry parses at offset %s, %s bytes left undecoded",
                position,
                len(buffer) - position,
            )
            break
    return entries


def function_names(entries: List[stellar_xdr.SCSpecEntry]) -> List[str]:
    """Names of the functions declared by ``entries``, in order."""
    return [
        entry.function_v0.name.sc_symbol.decode()
        for entry in entries
        if entry.kind == stellar_xdr.SCSpecEntryKind.SC_SPEC_ENTRY_FUNCTION_V0
    ]


def _function_entry_bytes(name: str) -> bytes:
    """XDR of a spec entry for ``fn <name>() -> u32`` without documentation."""
    encoded = name.encode()
    padding = b"\x00" * (-len(encoded) % 4)
    return (
        struct.pack(">iI", 0, 0)
        + struct.pack(">I", len(encoded))
        + encoded
        + padding
        + struct.pack(">IIi", 0, 1, 4)
    )


class Test(unittest.TestCase):
    NAMES = ["hello", "increment", "get_count", "transfer", "balance"]

    def test_empty(self):
        self.assertEqual(decode_contract_spec(b""), [])
        self.assertEqual(decode_contract_spec_stream(b""), [])

    def test_single(self):
        entries = decode_contract_spec(_function_entry_bytes("hello"))
        self.assertEqual(function_names(entries), ["hello"])
        output = entries[0].function_v0.outputs[0]
        self.assertEqual(output.type, stellar_xdr.SCSpecType.SC_SPEC_TYPE_U32)

    def test_five_in_order(self):
        buffer = b"".join(_function_entry_bytes(x) for x in self.NAMES)
        self.assertEqual(function_names(decode_contract_spec(buffer)), self.NAMES)
        self.assertEqual(
            function_names(decode_contract_spec_stream(buffer)), self.NAMES
        )

    def test_trailing_garbage(self):
        buffer = _function_entry_bytes("hello") + b"\xff\xff\xff"
        self.assertEqual(function_names(decode_contract_spec(buffer)), ["hello"])
        self.assertEqual(
            function_names(decode_contract_spec_stream(buffer)), ["hello"]
        )

    def test_decoders_agree(self):
        buffer = b"".join(_function_entry_bytes(x) for x in self.NAMES[:3])
        probed = decode_contract_spec(buffer)
        streamed = decode_contract_spec_stream(buffer)
        self.assertEqual(
            [x.to_xdr_bytes() for x in probed], [x.to_xdr_bytes() for x in streamed]
        )
