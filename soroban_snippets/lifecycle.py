# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
End to end transaction lifecycle.

:func:`run_transaction` chains the four stages for a single envelope::

    resolve account -> build (-> prepare) -> sign -> submit and await -> decode

and reports the result as an :class:`Outcome` instead of raising: either
``value`` holds the decoded return value or ``error`` the exception that
stopped the lifecycle. An optional ``on_complete`` hook is called exactly once
with the outcome, whether the run succeeded, failed or was cancelled.

Examples:
    Calling a contract function::

        outcome = await run_transaction(
            context,
            signer.address,
            [InvokeContract(contract_id, "increment")],
            signer,
            on_complete=lambda outcome: print("Done", outcome),
        )
        if outcome.ok:
            print(outcome.value)
"""

from __future__ import annotations

import asyncio
import logging
import sys
import unittest
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Union
from unittest.mock import AsyncMock, patch

import httpx
from stellar_sdk import Keypair, SorobanDataBuilder, scval
from stellar_sdk import xdr as stellar_xdr

from .account import AccountSnapshot
from .async_client import (
    ClientConfig,
    GetTransactionResponse,
    GetTransactionStatus,
    SendTransactionResponse,
    SendTransactionStatus,
    SimulateTransactionResponse,
    SorobanRpcClient,
)
from .context import ClientContext
from .envelope import EnvelopeBuilder
from .errors import InvalidInputError, SigningRejectedError, SorobanError
from .operations import InvokeContract, Operation, OutcomeKind, is_soroban
from .result_decoder import _meta_xdr_with_return_value, decode
from .signing import _CancellingSigner, KeypairSigner, Signer, SigningGateway
from .submission import TransactionSubmitter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Outcome:
    value: Any = None
    error: Optional[BaseException] = None
    tx_hash: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return the value, or raise the error that prevented one."""
        if self.error is not None:
            raise self.error
        return self.value


CompletionHook = Callable[[Outcome], None]


async def run_transaction(
    context: ClientContext,
    account_id: str,
    operations: Sequence[Operation],
    signer: Optional[Signer],
    fee: Optional[int] = None,
    timeout: Union[int, str, None] = None,
    memo: Optional[str] = None,
    soroban_data: Optional[stellar_xdr.SorobanTransactionData] = None,
    prepare: Optional[bool] = None,
    expect: Optional[OutcomeKind] = None,
    poll_interval: Optional[float] = None,
    max_attempts: Union[int, str, None] = None,
    on_complete: Optional[CompletionHook] = None,
) -> Outcome:
    """
    Build, sign, submit and decode one transaction from ``account_id``.

    :param fee: Inclusion fee per operation, defaults to the client configuration
    :param timeout: Envelope timeout, defaults to the client configuration
    :param prepare: Simulate before signing; by default only Soroban
        operations without explicit ``soroban_data`` are prepared
    :param on_complete: Called once with the outcome, also when the run is
        cancelled or fails with an unexpected exception
    :return: The outcome; library and HTTP errors are reported in it, any
        other exception propagates after ``on_complete`` ran
    """
    config = context.config
    outcome: Optional[Outcome] = None
    tx_hash: Optional[str] = None
    try:
        account = await context.resolve_account(account_id)
        builder = EnvelopeBuilder(context)
        envelope = builder.build(
            account,
            operations,
            fee if fee is not None else config.base_fee,
            timeout=timeout if timeout is not None else config.transaction_timeout,
            memo=memo,
            soroban_data=soroban_data,
        )
        if prepare is None:
            prepare = soroban_data is None and any(is_soroban(x) for x in operations)
        if prepare:
            envelope = await builder.prepare(envelope)

        signed = await SigningGateway(context).sign(envelope, account_id, signer)
        tx_hash = signed.hash_hex()
        result = await TransactionSubmitter(context).submit_and_await(
            signed, poll_interval, max_attempts
        )
        decoded = decode(result, expect)
        outcome = Outcome(value=decoded.value, tx_hash=tx_hash)
    except (SorobanError, httpx.HTTPError) as e:
        logger.warning("transaction from %s did not complete: %s", account_id, e)
        outcome = Outcome(error=e, tx_hash=tx_hash)
    finally:
        if on_complete is not None:
            if outcome is None:
                outcome = Outcome(error=sys.exc_info()[1], tx_hash=tx_hash)
            on_complete(outcome)
    return outcome


class Test(unittest.IsolatedAsyncioTestCase):
    CONTRACT = "CDLZFC3SYJYDZT7K67VZ75HPJVIEUVNIXF47ZG2FB2RMQQVU2HHGCYSC"

    async def asyncSetUp(self):
        self.keypair = Keypair.random()
        self.signer = KeypairSigner(self.keypair)
        self.client = SorobanRpcClient("https://rpc.test", ClientConfig(http2=False))

        async def resolver(address: str) -> AccountSnapshot:
            return AccountSnapshot(address, 41)

        self.context = ClientContext.from_client(self.client, account_resolver=resolver)
        self.completed: List[Outcome] = []
        self.simulation = SimulateTransactionResponse(
            latest_ledger=100,
            transaction_data=SorobanDataBuilder().build().to_xdr(),
            min_resource_fee=1000,
        )

    async def asyncTearDown(self):
        await self.client.close()

    def operations(self) -> List[Operation]:
        return [InvokeContract(self.CONTRACT, "increment")]

    async def test_counter_after_three_polls(self):
        not_found = GetTransactionResponse(GetTransactionStatus.NOT_FOUND, 100)
        success = GetTransactionResponse(
            GetTransactionStatus.SUCCESS,
            101,
            ledger=101,
            result_meta_xdr=_meta_xdr_with_return_value(scval.to_uint32(1000)),
        )
        pending = SendTransactionResponse("", SendTransactionStatus.PENDING, 100)

        with patch.object(
            SorobanRpcClient, "simulate_transaction", return_value=self.simulation
        ), patch.object(
            SorobanRpcClient, "send_transaction", return_value=pending
        ), patch.object(
            SorobanRpcClient,
            "get_transaction",
            side_effect=[not_found, not_found, not_found, success],
        ) as get, patch.object(asyncio, "sleep", AsyncMock()):
            outcome = await run_transaction(
                self.context,
                self.signer.address,
                self.operations(),
                self.signer,
                on_complete=self.completed.append,
            )
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.value, 1000)
        self.assertEqual(get.call_count, 4)
        self.assertEqual(self.completed, [outcome])
        get.assert_called_with(outcome.tx_hash)

    async def test_user_cancel(self):
        with patch.object(
            SorobanRpcClient, "simulate_transaction", return_value=self.simulation
        ), patch.object(SorobanRpcClient, "send_transaction") as send:
            outcome = await run_transaction(
                self.context,
                self.signer.address,
                self.operations(),
                _CancellingSigner(),
                on_complete=self.completed.append,
            )
        send.assert_not_called()
        self.assertIsInstance(outcome.error, SigningRejectedError)
        self.assertEqual(self.completed, [outcome])
        with self.assertRaises(SigningRejectedError):
            outcome.unwrap()

    async def test_invalid_fee(self):
        outcome = await run_transaction(
            self.context,
            self.signer.address,
            self.operations(),
            self.signer,
            fee=0,
            on_complete=self.completed.append,
        )
        self.assertIsInstance(outcome.error, InvalidInputError)
        self.assertIsNone(outcome.tx_hash)
        self.assertEqual(len(self.completed), 1)

    async def test_hook_runs_on_cancellation(self):
        with patch.object(
            SorobanRpcClient, "simulate_transaction", side_effect=asyncio.CancelledError
        ):
            with self.assertRaises(asyncio.CancelledError):
                await run_transaction(
                    self.context,
                    self.signer.address,
                    self.operations(),
                    self.signer,
                    on_complete=self.completed.append,
                )
        self.assertEqual(len(self.completed), 1)
        self.assertIsInstance(self.completed[0].error, asyncio.CancelledError)
