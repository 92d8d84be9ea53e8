# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Envelope construction.

:class:`EnvelopeBuilder` turns an account snapshot, a list of operations and a
fee into an unsigned :class:`Envelope`. Construction is pure: the snapshot is
left untouched and, given the same inputs (including ``now`` for finite
timeouts), two builds produce byte-identical XDR and therefore the same hash.

An envelope can still be changed before it is signed, but every change
returns a new envelope::

    envelope = builder.build(snapshot, [RestoreFootprint()], fee=100)
    envelope = envelope.with_soroban_data(restore_footprint_data(keys))
    envelope = envelope.with_memo("restore")

Transactions carrying a Soroban operation need their footprint and resource
fee before they can be applied; :meth:`EnvelopeBuilder.prepare` fills both in
from a simulation.
"""

from __future__ import annotations

import logging
import time
import unittest
from typing import List, Optional, Sequence, Tuple, Union
from unittest.mock import patch

from stellar_sdk import (
    Asset,
    InvokeHostFunction,
    Keypair,
    Network,
    SorobanDataBuilder,
    TextMemo,
    TransactionBuilder,
    TransactionEnvelope,
)
from stellar_sdk import xdr as stellar_xdr
from stellar_sdk.exceptions import MemoInvalidException

from .account import AccountSnapshot, account_ledger_key
from .async_client import (
    TIMEOUT_INFINITE,
    ClientConfig,
    SimulateTransactionResponse,
    SorobanRpcClient,
)
from .context import ClientContext
from .errors import InvalidInputError, SimulationFailedError
from .operations import (
    CreateContract,
    InvokeContract,
    Operation,
    OutcomeKind,
    Payment,
    RestoreFootprint,
    is_soroban,
)

logger = logging.getLogger(__name__)


class Envelope:
    """An unsigned transaction envelope bound to a network passphrase."""

    transaction_envelope: TransactionEnvelope
    network_passphrase: str
    operations: Tuple[Operation, ...]
    inclusion_fee: int

    def __init__(
        self,
        transaction_envelope: TransactionEnvelope,
        network_passphrase: str,
        operations: Sequence[Operation],
        inclusion_fee: int,
    ):
        self.transaction_envelope = transaction_envelope
        self.network_passphrase = network_passphrase
        self.operations = tuple(operations)
        self.inclusion_fee = inclusion_fee

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Envelope):
            return NotImplemented
        return (
            self.to_xdr() == other.to_xdr()
            and self.network_passphrase == other.network_passphrase
        )

    def __str__(self) -> str:
        return f"Envelope[{self.hash_hex()}]"

    def to_xdr(self) -> str:
        return self.transaction_envelope.to_xdr()

    def hash(self) -> bytes:
        return self.transaction_envelope.hash()

    def hash_hex(self) -> str:
        return self.transaction_envelope.hash_hex()

    @property
    def source(self) -> str:
        return self.transaction_envelope.transaction.source.account_id

    @property
    def sequence(self) -> int:
        return self.transaction_envelope.transaction.sequence

    @property
    def fee(self) -> int:
        return self.transaction_envelope.transaction.fee

    @property
    def expected_outcome(self) -> OutcomeKind:
        for operation in self.operations:
            if is_soroban(operation):
                return operation.expected_outcome
        return OutcomeKind.NONE

    def with_memo(self, text: str) -> Envelope:
        try:
            memo = TextMemo(text)
        except MemoInvalidException as e:
            raise InvalidInputError(str(e)) from e
        envelope = self._copy()
        envelope.transaction_envelope.transaction.memo = memo
        return envelope

    def with_soroban_data(
        self,
        soroban_data: stellar_xdr.SorobanTransactionData,
        resource_fee: Optional[int] = None,
    ) -> Envelope:
        """Attach the footprint and resources, raising the fee to cover them.

        ``resource_fee`` overrides the fee recorded in ``soroban_data``.
        """
        envelope = self._copy()
        transaction = envelope.transaction_envelope.transaction
        if resource_fee is not None:
            soroban_data = stellar_xdr.SorobanTransactionData.from_xdr(
                soroban_data.to_xdr()
            )
            soroban_data.resource_fee = stellar_xdr.Int64(resource_fee)
        transaction.soroban_data = soroban_data
        transaction.fee = (
            envelope.inclusion_fee * len(transaction.operations)
            + soroban_data.resource_fee.int64
        )
        return envelope

    def with_auth(
        self, entries: Sequence[stellar_xdr.SorobanAuthorizationEntry]
    ) -> Envelope:
        envelope = self._copy()
        operation = envelope.transaction_envelope.transaction.operations[0]
        if not isinstance(operation, InvokeHostFunction):
            raise InvalidInputError("Only host function invocations carry auth")
        operation.auth = list(entries)
        return envelope

    def _copy(self) -> Envelope:
        copied = TransactionEnvelope.from_xdr(self.to_xdr(), self.network_passphrase)
        return Envelope(
            copied, self.network_passphrase, self.operations, self.inclusion_fee
        )


def _time_bounds(timeout: Union[int, str], now: Optional[int]) -> Tuple[int, int]:
    if timeout == TIMEOUT_INFINITE:
        return 0, 0
    if isinstance(timeout, bool) or not isinstance(timeout, int):
        raise InvalidInputError(f"Invalid timeout {timeout!r}")
    if timeout < 0:
        raise InvalidInputError("timeout must not be negative")
    if now is None:
        now = int(time.time())
    return 0, now + timeout


class EnvelopeBuilder:
    """Builds unsigned envelopes for the network of a :class:`ClientContext`."""

    context: ClientContext

    def __init__(self, context: ClientContext):
        self.context = context

    def build(
        self,
        account: AccountSnapshot,
        operations: Sequence[Operation],
        fee: int,
        network_passphrase: Optional[str] = None,
        timeout: Union[int, str] = TIMEOUT_INFINITE,
        memo: Optional[str] = None,
        soroban_data: Optional[stellar_xdr.SorobanTransactionData] = None,
        now: Optional[int] = None,
    ) -> Envelope:
        """
        Build an unsigned envelope.

        :param account: Snapshot of the source account; left unchanged
        :param operations: At least one operation; a Soroban operation must be
            the only one
        :param fee: Inclusion fee per operation in stroops, must be positive
        :param network_passphrase: Defaults to the context's network
        :param timeout: Seconds from ``now`` until the envelope expires, or
            ``"infinite"``
        :param now: Unix time the timeout counts from, defaults to the clock
        :raises InvalidInputError: If the inputs can never form a valid envelope
        """
        operations = list(operations)
        if not operations:
            raise InvalidInputError("An envelope needs at least one operation")
        if isinstance(fee, bool) or not isinstance(fee, int) or fee <= 0:
            raise InvalidInputError(f"fee must be a positive integer, got {fee!r}")
        if len(operations) > 1 and any(is_soroban(x) for x in operations):
            raise InvalidInputError(
                "A Soroban operation must be the only operation of an envelope"
            )
        min_time, max_time = _time_bounds(timeout, now)
        passphrase = network_passphrase or self.context.network_passphrase

        builder = TransactionBuilder(
            account.to_sdk_account(), network_passphrase=passphrase, base_fee=fee
        )
        for operation in operations:
            operation.append_to(builder)
        builder.add_time_bounds(min_time, max_time)
        if memo is not None:
            try:
                builder.add_text_memo(memo)
            except MemoInvalidException as e:
                raise InvalidInputError(str(e)) from e
        if soroban_data is not None:
            builder.set_soroban_data(soroban_data)
        transaction_envelope = builder.build()
        transaction = transaction_envelope.transaction
        transaction.fee = fee * len(operations)
        if transaction.soroban_data is not None:
            transaction.fee += transaction.soroban_data.resource_fee.int64

        envelope = Envelope(transaction_envelope, passphrase, operations, fee)
        logger.debug(
            "built %s for %s at sequence %s", envelope, account.account_id, envelope.sequence
        )
        return envelope

    async def prepare(self, envelope: Envelope) -> Envelope:
        """
        Simulate ``envelope`` and return a copy carrying the simulated
        footprint, resource fee and authorization entries.

        Authorization entries already present on the envelope are kept.

        :raises SimulationFailedError: If the endpoint could not simulate it
        """
        simulation = await self.context.endpoint.simulate_transaction(envelope.to_xdr())
        if simulation.error:
            logger.warning("simulation of %s failed: %s", envelope, simulation.error)
            raise SimulationFailedError(simulation.error)
        soroban_data = simulation.soroban_data()
        if soroban_data is None:
            raise SimulationFailedError("simulation returned no transaction data")

        prepared = envelope.with_soroban_data(soroban_data, simulation.min_resource_fee)
        operation = prepared.transaction_envelope.transaction.operations[0]
        if isinstance(operation, InvokeHostFunction) and not operation.auth:
            prepared = prepared.with_auth(simulation.auth_entries())
        logger.info(
            "prepared %s with resource fee %s", prepared, simulation.min_resource_fee
        )
        return prepared


def restore_footprint_data(
    keys: Sequence[stellar_xdr.LedgerKey],
) -> stellar_xdr.SorobanTransactionData:
    """Soroban data whose read-write footprint lists the entries to restore."""
    if not keys:
        raise InvalidInputError("Nothing to restore")
    return SorobanDataBuilder().set_read_write(list(keys)).build()


def extend_footprint_data(
    keys: Sequence[stellar_xdr.LedgerKey],
) -> stellar_xdr.SorobanTransactionData:
    """Soroban data whose read-only footprint lists the entries to extend."""
    if not keys:
        raise InvalidInputError("Nothing to extend")
    return SorobanDataBuilder().set_read_only(list(keys)).build()


class Test(unittest.IsolatedAsyncioTestCase):
    CONTRACT = "CDLZFC3SYJYDZT7K67VZ75HPJVIEUVNIXF47ZG2FB2RMQQVU2HHGCYSC"

    async def asyncSetUp(self):
        self.client = SorobanRpcClient("https://rpc.test", ClientConfig(http2=False))
        self.context = ClientContext.from_client(self.client)
        self.builder = EnvelopeBuilder(self.context)
        self.snapshot = AccountSnapshot(Keypair.random().public_key, 100)

    async def asyncTearDown(self):
        await self.client.close()

    def invoke(self) -> List[Operation]:
        return [InvokeContract(self.CONTRACT, "increment")]

    def test_deterministic(self):
        first = self.builder.build(self.snapshot, self.invoke(), 100, timeout=30, now=1000)
        second = self.builder.build(self.snapshot, self.invoke(), 100, timeout=30, now=1000)
        self.assertEqual(first.to_xdr(), second.to_xdr())
        self.assertEqual(first.hash(), second.hash())
        self.assertEqual(first, second)

    def test_deterministic_without_salt(self):
        operations = [CreateContract("00" * 32, self.snapshot.account_id)]
        first = self.builder.build(self.snapshot, operations, 100)
        second = self.builder.build(self.snapshot, operations, 100)
        self.assertEqual(first.to_xdr(), second.to_xdr())
        self.assertEqual(first.expected_outcome, OutcomeKind.ADDRESS)

    def test_sequence_and_snapshot(self):
        envelope = self.builder.build(self.snapshot, self.invoke(), 100)
        self.assertEqual(envelope.sequence, 101)
        self.assertEqual(self.snapshot.sequence, 100)
        self.assertEqual(envelope.source, self.snapshot.account_id)
        self.assertEqual(envelope.fee, 100)
        self.assertEqual(envelope.network_passphrase, Network.TESTNET_NETWORK_PASSPHRASE)
        self.assertEqual(envelope.expected_outcome, OutcomeKind.SCALAR)

    def test_time_bounds(self):
        infinite = self.builder.build(self.snapshot, self.invoke(), 100)
        bounds = infinite.transaction_envelope.transaction.preconditions.time_bounds
        self.assertEqual((bounds.min_time, bounds.max_time), (0, 0))

        finite = self.builder.build(self.snapshot, self.invoke(), 100, timeout=30, now=1000)
        bounds = finite.transaction_envelope.transaction.preconditions.time_bounds
        self.assertEqual((bounds.min_time, bounds.max_time), (0, 1030))

    def test_invalid_inputs(self):
        with self.assertRaises(InvalidInputError):
            self.builder.build(self.snapshot, self.invoke(), 0)
        with self.assertRaises(InvalidInputError):
            self.builder.build(self.snapshot, [], 100)
        with self.assertRaises(InvalidInputError):
            self.builder.build(self.snapshot, self.invoke(), 100, timeout=-1)
        with self.assertRaises(InvalidInputError):
            self.builder.build(
                self.snapshot, self.invoke() + [RestoreFootprint()], 100
            )

    def test_classic_operations(self):
        destination = Keypair.random().public_key
        payments = [
            Payment(destination, Asset.native(), "1"),
            Payment(destination, Asset.native(), "2"),
        ]
        envelope = self.builder.build(self.snapshot, payments, 100)
        self.assertEqual(envelope.fee, 200)
        self.assertEqual(envelope.expected_outcome, OutcomeKind.NONE)

    def test_mutation_returns_new_envelope(self):
        envelope = self.builder.build(self.snapshot, [RestoreFootprint()], 100)
        data = restore_footprint_data(
            [account_ledger_key(self.snapshot.account_id)]
        )
        restored = envelope.with_soroban_data(data, resource_fee=5000).with_memo("hi")
        self.assertIsNone(envelope.transaction_envelope.transaction.soroban_data)
        self.assertEqual(restored.fee, 5100)
        self.assertEqual(restored.transaction_envelope.transaction.memo, TextMemo("hi"))
        self.assertNotEqual(envelope.hash(), restored.hash())
        with self.assertRaises(InvalidInputError):
            envelope.with_memo("x" * 29)
        with self.assertRaises(InvalidInputError):
            envelope.with_auth([])

    def test_empty_footprints(self):
        with self.assertRaises(InvalidInputError):
            restore_footprint_data([])
        with self.assertRaises(InvalidInputError):
            extend_footprint_data([])

    async def test_prepare(self):
        soroban_data = SorobanDataBuilder().set_resource_fee(1234).build()
        simulation = SimulateTransactionResponse(
            latest_ledger=10,
            transaction_data=soroban_data.to_xdr(),
            min_resource_fee=4321,
        )
        envelope = self.builder.build(self.snapshot, self.invoke(), 100)
        with patch.object(
            SorobanRpcClient, "simulate_transaction", return_value=simulation
        ) as simulate:
            prepared = await self.builder.prepare(envelope)
        simulate.assert_called_once_with(envelope.to_xdr())
        self.assertEqual(prepared.fee, 4421)
        self.assertEqual(prepared.sequence, envelope.sequence)
        self.assertEqual(prepared.operations, envelope.operations)

    async def test_prepare_simulation_error(self):
        simulation = SimulateTransactionResponse(latest_ledger=10, error="HostError")
        envelope = self.builder.build(self.snapshot, self.invoke(), 100)
        with patch.object(
            SorobanRpcClient, "simulate_transaction", return_value=simulation
        ):
            with self.assertRaises(SimulationFailedError):
                await self.builder.prepare(envelope)
