# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Minimal WebAssembly module reader.

Only what is needed to inspect deployed contracts is supported: walking the
section headers of a module and extracting its custom sections, where Soroban
contracts keep their interface (``contractspecv0``), environment metadata
(``contractenvmetav0``) and build metadata (``contractmetav0``).

Learn more at https://webassembly.github.io/spec/core/binary/modules.html

Examples:
    Reading the interface of a contract::

        wasm = await get_contract_wasm(client, contract_id)
        spec = custom_section(wasm, "contractspecv0")
        entries = decode_contract_spec(spec)
"""

import io
import unittest
from typing import Dict, List, Optional, Tuple

from .errors import InvalidInputError

MAGIC = b"\x00asm"
VERSION = 1
CUSTOM_SECTION_ID = 0
MAX_U32 = 4294967295

CONTRACT_SPEC_SECTION = "contractspecv0"
CONTRACT_ENV_META_SECTION = "contractenvmetav0"
CONTRACT_META_SECTION = "contractmetav0"


class WasmReader:
    """Sequential reader over the bytes of a WASM module.

    Attributes:
        _input: Internal BytesIO stream for reading data.
        _length: Total length of the input data.
    """

    _input: io.BytesIO
    _length: int

    def __init__(self, data: bytes):
        self._length = len(data)
        self._input = io.BytesIO(data)

    def remaining(self) -> int:
        return self._length - self._input.tell()

    def u8(self) -> int:
        return self._read_int(1)

    def u32(self) -> int:
        """Read a fixed width little-endian u32, as used by the module header."""
        return self._read_int(4)

    def uleb128(self) -> int:
        """Read a ULEB128 encoded u32, as used for sizes and counts."""
        value = 0
        shift = 0

        while value <= MAX_U32:
            byte = self._read_int(1)
            value |= (byte & 0x7F) << shift
            if byte & 0x80 == 0:
                break
            shift += 7

        if value > MAX_U32:
            raise InvalidInputError("Unexpectedly large uleb128 value")

        return value

    def name(self) -> str:
        length = self.uleb128()
        try:
            return self._read(length).decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidInputError(f"Invalid section name: {e}") from e

    def fixed_bytes(self, length: int) -> bytes:
        return self._read(length)

    def _read(self, length: int) -> bytes:
        value = self._input.read(length)
        if value is None or len(value) < length:
            actual_length = 0 if value is None else len(value)
            error = (
                f"Unexpected end of module. Requested: {length}, found: {actual_length}"
            )
            raise InvalidInputError(error)
        return value

    def _read_int(self, length: int) -> int:
        return int.from_bytes(self._read(length), byteorder="little", signed=False)


def sections(wasm: bytes) -> List[Tuple[int, bytes]]:
    """Return ``(section id, payload)`` pairs in module order."""
    reader = WasmReader(wasm)
    if reader.fixed_bytes(4) != MAGIC:
        raise InvalidInputError("Not a WebAssembly module")
    version = reader.u32()
    if version != VERSION:
        raise InvalidInputError(f"Unsupported WebAssembly version {version}")

    result = []
    while reader.remaining() > 0:
        section_id = reader.u8()
        size = reader.uleb128()
        result.append((section_id, reader.fixed_bytes(size)))
    return result


def custom_sections(wasm: bytes) -> Dict[str, List[bytes]]:
    """Map each custom section name to the payloads carrying it."""
    result: Dict[str, List[bytes]] = {}
    for section_id, payload in sections(wasm):
        if section_id != CUSTOM_SECTION_ID:
            continue
        reader = WasmReader(payload)
        name = reader.name()
        result.setdefault(name, []).append(reader.fixed_bytes(reader.remaining()))
    return result


def custom_section(wasm: bytes, name: str) -> Optional[bytes]:
    """The payloads of all custom sections called ``name`` joined, or None."""
    payloads = custom_sections(wasm).get(name)
    if payloads is None:
        return None
    return b"".join(payloads)


def uleb128(value: int) -> bytes:
    output = bytearray()
    while value >= 0x80:
        output.append((value & 0x7F) | 0x80)
        value >>= 7
    output.append(value)
    return bytes(output)


def _module_bytes(custom: Dict[str, bytes]) -> bytes:
    """A module holding one empty type section plus the given custom sections."""
    output = MAGIC + VERSION.to_bytes(4, "little")
    output += bytes([1]) + uleb128(1) + bytes([0])
    for name, payload in custom.items():
        content = uleb128(len(name)) + name.encode() + payload
        output += bytes([CUSTOM_SECTION_ID]) + uleb128(len(content)) + content
    return output


class Test(unittest.TestCase):
    def test_uleb128(self):
        for value in [0, 1, 127, 128, 300, 16384, MAX_U32]:
            self.assertEqual(WasmReader(uleb128(value)).uleb128(), value)
        with self.assertRaises(InvalidInputError):
            WasmReader(uleb128(MAX_U32 + 1)).uleb128()

    def test_custom_sections(self):
        wasm = _module_bytes(
            {CONTRACT_SPEC_SECTION: b"spec" * 40, CONTRACT_META_SECTION: b"meta"}
        )
        self.assertEqual(len(sections(wasm)), 3)
        self.assertEqual(custom_section(wasm, CONTRACT_SPEC_SECTION), b"spec" * 40)
        self.assertEqual(custom_section(wasm, CONTRACT_META_SECTION), b"meta")
        self.assertIsNone(custom_section(wasm, CONTRACT_ENV_META_SECTION))

    def test_not_wasm(self):
        with self.assertRaises(InvalidInputError):
            sections(b"\x7fELF\x01\x00\x00\x00")
        with self.assertRaises(InvalidInputError):
            sections(MAGIC + (2).to_bytes(4, "little"))

    def test_truncated(self):
        wasm = _module_bytes({CONTRACT_SPEC_SECTION: b"spec"})
        with self.assertRaises(InvalidInputError):
            sections(wasm[:-2])
