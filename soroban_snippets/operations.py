# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
The closed set of operations an envelope can carry.

Each variant is an immutable dataclass holding only the fields its action
needs. A variant knows how to append itself to a ``stellar_sdk``
``TransactionBuilder`` and which shape of return value a successful
transaction carrying it produces.
"""

from __future__ import annotations

import os
import unittest
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Tuple, Union

from stellar_sdk import Asset, Keypair, StrKey, TransactionBuilder
from stellar_sdk import xdr as stellar_xdr

from .errors import InvalidInputError


class OutcomeKind(Enum):
    """How the return value of a successful transaction is interpreted."""

    SCALAR = "scalar"
    HASH = "hash"
    ADDRESS = "address"
    NONE = "none"


def _check_contract_id(contract_id: str):
    if not StrKey.is_valid_contract(contract_id):
        raise InvalidInputError(f"Invalid contract id {contract_id!r}")


@dataclass(frozen=True)
class InvokeContract:
    """Call ``function_name`` on a deployed contract."""

    contract_id: str
    function_name: str
    parameters: Tuple[stellar_xdr.SCVal, ...] = ()
    auth: Tuple[stellar_xdr.SorobanAuthorizationEntry, ...] = ()

    def __post_init__(self):
        _check_contract_id(self.contract_id)
        if not self.function_name:
            raise InvalidInputError("function_name must not be empty")
        object.__setattr__(self, "parameters", tuple(self.parameters))
        object.__setattr__(self, "auth", tuple(self.auth))

    @property
    def expected_outcome(self) -> OutcomeKind:
        return OutcomeKind.SCALAR

    def append_to(self, builder: TransactionBuilder):
        builder.append_invoke_contract_function_op(
            contract_id=self.contract_id,
            function_name=self.function_name,
            parameters=list(self.parameters),
            auth=list(self.auth) or None,
        )


@dataclass(frozen=True)
class UploadCode:
    """Install contract WASM on the ledger, returning its hash."""

    wasm: bytes

    def __post_init__(self):
        if not self.wasm:
            raise InvalidInputError("wasm must not be empty")

    @property
    def expected_outcome(self) -> OutcomeKind:
        return OutcomeKind.HASH

    def append_to(self, builder: TransactionBuilder):
        builder.append_upload_contract_wasm_op(contract=self.wasm)


@dataclass(frozen=True)
class CreateContract:
    """Deploy a contract instance of already uploaded WASM.

    The contract address is derived from ``deployer`` and ``salt``. Without a
    salt one is drawn at random when the operation is created, so every
    envelope built from the same operation carries the same salt.
    """

    wasm_hash: str
    deployer: str
    salt: Optional[bytes] = None

    def __post_init__(self):
        try:
            raw = bytes.fromhex(self.wasm_hash)
        except ValueError as e:
            raise InvalidInputError(f"wasm_hash is not hex: {e}") from e
        if len(raw) != 32:
            raise InvalidInputError("wasm_hash must be 32 bytes")
        if self.salt is None:
            object.__setattr__(self, "salt", os.urandom(32))
        elif len(self.salt) != 32:
            raise InvalidInputError("salt must be 32 bytes")
        if not StrKey.is_valid_ed25519_public_key(self.deployer):
            raise InvalidInputError(f"Invalid deployer {self.deployer!r}")

    @property
    def expected_outcome(self) -> OutcomeKind:
        return OutcomeKind.ADDRESS

    def append_to(self, builder: TransactionBuilder):
        builder.append_create_contract_op(
            wasm_id=self.wasm_hash, address=self.deployer, salt=self.salt
        )


@dataclass(frozen=True)
class CreateAssetContract:
    """Deploy the Stellar Asset Contract wrapping a classic asset."""

    asset: Asset

    @property
    def expected_outcome(self) -> OutcomeKind:
        return OutcomeKind.ADDRESS

    def append_to(self, builder: TransactionBuilder):
        builder.append_create_stellar_asset_contract_from_asset_op(asset=self.asset)


@dataclass(frozen=True)
class ChangeTrust:
    """Create, update or remove (limit ``"0"``) a trustline."""

    asset: Asset
    limit: Optional[str] = None

    def __post_init__(self):
        if self.asset.is_native():
            raise InvalidInputError("Cannot trust the native asset")

    @property
    def expected_outcome(self) -> OutcomeKind:
        return OutcomeKind.NONE

    def append_to(self, builder: TransactionBuilder):
        builder.append_change_trust_op(asset=self.asset, limit=self.limit)


@dataclass(frozen=True)
class Payment:
    destination: str
    asset: Asset
    amount: str

    def __post_init__(self):
        if not StrKey.is_valid_ed25519_public_key(self.destination):
            raise InvalidInputError(f"Invalid destination {self.destination!r}")
        try:
            amount = Decimal(self.amount)
        except InvalidOperation as e:
            raise InvalidInputError(f"Invalid amount {self.amount!r}") from e
        if amount <= 0:
            raise InvalidInputError("amount must be positive")

    @property
    def expected_outcome(self) -> OutcomeKind:
        return OutcomeKind.NONE

    def append_to(self, builder: TransactionBuilder):
        builder.append_payment_op(
            destination=self.destination, asset=self.asset, amount=self.amount
        )


@dataclass(frozen=True)
class ExtendFootprint:
    """Extend the TTL of the footprint entries to ``extend_to`` ledgers from now.

    The footprint itself travels in the envelope's soroban data, see
    :func:`soroban_snippets.envelope.extend_footprint_data`.
    """

    extend_to: int

    def __post_init__(self):
        if self.extend_to <= 0:
            raise InvalidInputError("extend_to must be positive")

    @property
    def expected_outcome(self) -> OutcomeKind:
        return OutcomeKind.NONE

    def append_to(self, builder: TransactionBuilder):
        builder.append_extend_footprint_ttl_op(extend_to=self.extend_to)


@dataclass(frozen=True)
class RestoreFootprint:
    """Restore the archived entries listed in the envelope's read-write footprint."""

    @property
    def expected_outcome(self) -> OutcomeKind:
        return OutcomeKind.NONE

    def append_to(self, builder: TransactionBuilder):
        builder.append_restore_footprint_op()


Operation = Union[
    InvokeContract,
    UploadCode,
    CreateContract,
    CreateAssetContract,
    ChangeTrust,
    Payment,
    ExtendFootprint,
    RestoreFootprint,
]

SOROBAN_OPERATIONS = (
    InvokeContract,
    UploadCode,
    CreateContract,
    CreateAssetContract,
    ExtendFootprint,
    RestoreFootprint,
)


def is_soroban(operation: Operation) -> bool:
    return isinstance(operation, SOROBAN_OPERATIONS)


class Test(unittest.TestCase):
    CONTRACT = "CDLZFC3SYJYDZT7K67VZ75HPJVIEUVNIXF47ZG2FB2RMQQVU2HHGCYSC"

    def test_expected_outcomes(self):
        deployer = Keypair.random().public_key
        self.assertEqual(
            InvokeContract(self.CONTRACT, "hello").expected_outcome,
            OutcomeKind.SCALAR,
        )
        self.assertEqual(UploadCode(b"\x00asm").expected_outcome, OutcomeKind.HASH)
        self.assertEqual(
            CreateContract("00" * 32, deployer).expected_outcome, OutcomeKind.ADDRESS
        )
        self.assertEqual(
            CreateAssetContract(Asset.native()).expected_outcome, OutcomeKind.ADDRESS
        )
        self.assertEqual(RestoreFootprint().expected_outcome, OutcomeKind.NONE)
        self.assertEqual(ExtendFootprint(1000).expected_outcome, OutcomeKind.NONE)

    def test_salt_drawn_once(self):
        deployer = Keypair.random().public_key
        op = CreateContract("00" * 32, deployer)
        self.assertEqual(len(op.salt), 32)
        self.assertNotEqual(op.salt, CreateContract("00" * 32, deployer).salt)
        with self.assertRaises(InvalidInputError):
            CreateContract("00" * 32, deployer, b"short")

    def test_parameters_are_frozen(self):
        void = stellar_xdr.SCVal(stellar_xdr.SCValType.SCV_VOID)
        op = InvokeContract(self.CONTRACT, "add", [void])
        self.assertIsInstance(op.parameters, tuple)
        with self.assertRaises(AttributeError):
            op.function_name = "sub"  # type: ignore

    def test_invalid_inputs(self):
        with self.assertRaises(InvalidInputError):
            InvokeContract("not-a-contract", "hello")
        with self.assertRaises(InvalidInputError):
            InvokeContract(self.CONTRACT, "")
        with self.assertRaises(InvalidInputError):
            UploadCode(b"")
        with self.assertRaises(InvalidInputError):
            CreateContract("zz", Keypair.random().public_key)
        with self.assertRaises(InvalidInputError):
            ExtendFootprint(0)
        with self.assertRaises(InvalidInputError):
            ChangeTrust(Asset.native())
        with self.assertRaises(InvalidInputError):
            Payment(Keypair.random().public_key, Asset.native(), "0")

    def test_is_soroban(self):
        self.assertTrue(is_soroban(RestoreFootprint()))
        self.assertFalse(
            is_soroban(Payment(Keypair.random().public_key, Asset.native(), "1"))
        )
