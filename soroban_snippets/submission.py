# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Submission and confirmation of signed envelopes.

A signed envelope moves through the following states::

    BUILT -> SUBMITTED -> CONFIRMED_SUCCESS
                       -> CONFIRMED_FAILED
                       -> NOT_FOUND_TIMEOUT

``sendTransaction`` only acknowledges receipt, so after submitting the
:class:`TransactionSubmitter` polls ``getTransaction`` by hash until the
endpoint reports a terminal status. Every wait between two polls is an
``await``; cancelling the awaiting task simply stops polling while the
transaction stays pending on the network.

A result is never produced before the endpoint itself reports ``SUCCESS`` or
``FAILED`` for the hash. Terminal results are immutable and cached by hash.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import struct
import unittest
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union
from unittest.mock import AsyncMock, patch

from stellar_sdk import Keypair
from stellar_sdk import xdr as stellar_xdr

from .account import AccountSnapshot
from .async_client import (
    ClientConfig,
    GetTransactionResponse,
    GetTransactionStatus,
    SendTransactionResponse,
    SendTransactionStatus,
    SorobanRpcClient,
    TIMEOUT_INFINITE,
)
from .context import ClientContext
from .envelope import EnvelopeBuilder
from .errors import InvalidInputError, PollingTimeoutError, SubmissionRejectedError
from .operations import InvokeContract, OutcomeKind
from .signing import KeypairSigner, SignedEnvelope, SigningGateway

logger = logging.getLogger(__name__)


class SubmissionState(Enum):
    BUILT = "built"
    SUBMITTED = "submitted"
    CONFIRMED_SUCCESS = "confirmed_success"
    CONFIRMED_FAILED = "confirmed_failed"
    NOT_FOUND_TIMEOUT = "not_found_timeout"


@dataclass(frozen=True)
class Success:
    """The transaction was applied. ``expected`` tells how to read its return value."""

    tx_hash: str
    ledger: Optional[int]
    result_meta_xdr: str
    result_xdr: Optional[str] = None
    expected: OutcomeKind = OutcomeKind.SCALAR

    def meta(self) -> stellar_xdr.TransactionMeta:
        return stellar_xdr.TransactionMeta.from_xdr(self.result_meta_xdr)


@dataclass(frozen=True)
class Failed:
    tx_hash: str
    result_code: Optional[stellar_xdr.TransactionResultCode]
    ledger: Optional[int] = None
    result_xdr: Optional[str] = None


@dataclass(frozen=True)
class Unknown:
    """Polling gave up; the transaction may still be applied later."""

    tx_hash: str
    attempts: int


TransactionResult = Union[Success, Failed, Unknown]


def _result_code(result_xdr: Optional[str]) -> Optional[stellar_xdr.TransactionResultCode]:
    if not result_xdr:
        return None
    return stellar_xdr.TransactionResult.from_xdr(result_xdr).result.code


class TransactionSubmitter:
    """
    Sends signed envelopes to the context's endpoint and waits for them to settle.

    The submitter tracks the state of each hash it handled and caches
    terminal results, see :meth:`state` and :meth:`result`.
    """

    context: ClientContext

    def __init__(self, context: ClientContext):
        self.context = context
        self._states: Dict[str, SubmissionState] = {}
        self._results: Dict[str, TransactionResult] = {}
        self._expected: Dict[str, OutcomeKind] = {}

    def state(self, tx_hash: str) -> SubmissionState:
        return self._states.get(tx_hash, SubmissionState.BUILT)

    def result(self, tx_hash: str) -> Optional[TransactionResult]:
        return self._results.get(tx_hash)

    async def submit(self, signed: SignedEnvelope) -> str:
        """
        Send ``signed`` and return its hash without waiting for it to settle.

        :raises InvalidInputError: If ``signed`` was submitted before
        :raises SubmissionRejectedError: If the endpoint refused the transaction
        """
        envelope_xdr = signed.consume()
        tx_hash = signed.hash_hex()
        response = await self.context.endpoint.send_transaction(envelope_xdr)
        if response.hash and response.hash != tx_hash:
            logger.warning("endpoint reported hash %s for %s", response.hash, tx_hash)

        if response.status in (
            SendTransactionStatus.ERROR,
            SendTransactionStatus.TRY_AGAIN_LATER,
        ):
            result = response.error_result()
            code = result.result.code if result is not None else None
            logger.warning("transaction %s rejected: %s", tx_hash, response.status.value)
            raise SubmissionRejectedError(tx_hash, response.status.value, result, code)

        self._states[tx_hash] = SubmissionState.SUBMITTED
        self._expected[tx_hash] = signed.envelope.expected_outcome
        logger.info("transaction %s submitted (%s)", tx_hash, response.status.value)
        return tx_hash

    async def await_result(
        self,
        tx_hash: str,
        poll_interval: Optional[float] = None,
        max_attempts: Union[int, str, None] = None,
    ) -> TransactionResult:
        """
        Poll ``getTransaction`` until ``tx_hash`` settles.

        The first query is sent right away; ``poll_interval`` seconds pass
        between two queries while the endpoint answers ``NOT_FOUND``.

        :param poll_interval: Defaults to the client configuration
        :param max_attempts: Number of queries before giving up, defaults to
            the client configuration; ``"infinite"`` polls without limit
        :raises PollingTimeoutError: If all attempts returned ``NOT_FOUND``
        """
        cached = self._results.get(tx_hash)
        if cached is not None:
            return cached
        if poll_interval is None:
            poll_interval = self.context.config.poll_interval
        if (
            isinstance(poll_interval, bool)
            or not isinstance(poll_interval, (int, float))
            or poll_interval < 0
        ):
            raise InvalidInputError(
                f"poll_interval must be a non-negative number, got {poll_interval!r}"
            )
        if max_attempts is None:
            max_attempts = self.context.config.max_poll_attempts
        if max_attempts == TIMEOUT_INFINITE:
            max_attempts = None
        elif max_attempts is not None and (
            isinstance(max_attempts, bool)
            or not isinstance(max_attempts, int)
            or max_attempts <= 0
        ):
            raise InvalidInputError(
                f"max_attempts must be a positive integer or {TIMEOUT_INFINITE!r}, "
                f"got {max_attempts!r}"
            )

        attempts = 0
        while True:
            response = await self.context.endpoint.get_transaction(tx_hash)
            attempts += 1
            if response.status != GetTransactionStatus.NOT_FOUND:
                break
            if max_attempts is not None and attempts >= max_attempts:
                self._states[tx_hash] = SubmissionState.NOT_FOUND_TIMEOUT
                logger.warning("transaction %s not found after %s polls", tx_hash, attempts)
                raise PollingTimeoutError(tx_hash, attempts, Unknown(tx_hash, attempts))
            logger.debug("transaction %s not found yet (attempt %s)", tx_hash, attempts)
            await asyncio.sleep(poll_interval)

        result = self._settle(tx_hash, response)
        self._results[tx_hash] = result
        return result

    async def submit_and_await(
        self,
        signed: SignedEnvelope,
        poll_interval: Optional[float] = None,
        max_attempts: Union[int, str, None] = None,
    ) -> TransactionResult:
        """Submit ``signed`` and wait for its terminal result.

        A ``Failed`` result is returned, not raised.
        """
        tx_hash = await self.submit(signed)
        return await self.await_result(tx_hash, poll_interval, max_attempts)

    def _settle(
        self, tx_hash: str, response: GetTransactionResponse
    ) -> TransactionResult:
        if response.status == GetTransactionStatus.SUCCESS:
            self._states[tx_hash] = SubmissionState.CONFIRMED_SUCCESS
            logger.info("transaction %s confirmed in ledger %s", tx_hash, response.ledger)
            return Success(
                tx_hash,
                response.ledger,
                response.result_meta_xdr or "",
                response.result_xdr,
                self._expected.get(tx_hash, OutcomeKind.SCALAR),
            )
        self._states[tx_hash] = SubmissionState.CONFIRMED_FAILED
        code = _result_code(response.result_xdr)
        logger.warning(
            "transaction %s failed in ledger %s: %s",
            tx_hash,
            response.ledger,
            code.name if code is not None else "unknown",
        )
        return Failed(tx_hash, code, response.ledger, response.result_xdr)


def _not_found(ledger: int = 100) -> GetTransactionResponse:
    return GetTransactionResponse(GetTransactionStatus.NOT_FOUND, ledger)


def _result_xdr(code: int) -> str:
    # fee charged, result code, empty operation results (txFAILED only), ext
    if code == -1:
        raw = struct.pack(">qiIi", 100, code, 0, 0)
    else:
        raw = struct.pack(">qii", 100, code, 0)
    return base64.b64encode(raw).decode()


class Test(unittest.IsolatedAsyncioTestCase):
    CONTRACT = "CDLZFC3SYJYDZT7K67VZ75HPJVIEUVNIXF47ZG2FB2RMQQVU2HHGCYSC"

    async def asyncSetUp(self):
        self.client = SorobanRpcClient("https://rpc.test", ClientConfig(http2=False))
        self.context = ClientContext.from_client(self.client)
        self.submitter = TransactionSubmitter(self.context)
        keypair = Keypair.random()
        signer = KeypairSigner(keypair)
        envelope = EnvelopeBuilder(self.context).build(
            AccountSnapshot(keypair.public_key, 10),
            [InvokeContract(self.CONTRACT, "increment")],
            100,
        )
        self.signed = await SigningGateway(self.context).sign(
            envelope, signer.address, signer
        )
        self.tx_hash = self.signed.hash_hex()
        self.pending = SendTransactionResponse(
            self.tx_hash, SendTransactionStatus.PENDING, 100
        )

    async def asyncTearDown(self):
        await self.client.close()

    def success(self) -> GetTransactionResponse:
        return GetTransactionResponse(
            GetTransactionStatus.SUCCESS, 105, ledger=104, result_meta_xdr="AAAAAw=="
        )

    async def test_first_poll_returns_immediately(self):
        sleep = AsyncMock()
        with patch.object(
            SorobanRpcClient, "send_transaction", return_value=self.pending
        ), patch.object(
            SorobanRpcClient, "get_transaction", return_value=self.success()
        ) as get, patch.object(asyncio, "sleep", sleep):
            result = await self.submitter.submit_and_await(self.signed)
        self.assertIsInstance(result, Success)
        self.assertEqual(result.ledger, 104)
        self.assertEqual(result.expected, OutcomeKind.SCALAR)
        self.assertEqual(get.call_count, 1)
        sleep.assert_not_called()
        self.assertEqual(
            self.submitter.state(self.tx_hash), SubmissionState.CONFIRMED_SUCCESS
        )

    async def test_waits_while_not_found(self):
        responses = [_not_found(), _not_found(), _not_found(), self.success()]
        sleep = AsyncMock()
        with patch.object(
            SorobanRpcClient, "send_transaction", return_value=self.pending
        ), patch.object(
            SorobanRpcClient, "get_transaction", side_effect=responses
        ) as get, patch.object(asyncio, "sleep", sleep):
            result = await self.submitter.submit_and_await(self.signed, 0.5, 10)
        self.assertIsInstance(result, Success)
        self.assertEqual(get.call_count, 4)
        self.assertEqual(sleep.call_count, 3)
        sleep.assert_called_with(0.5)
        self.assertIs(self.submitter.result(self.tx_hash), result)

    async def test_one_sleep_per_not_found(self):
        for count in [0, 1, 2, 5, 10]:
            with self.subTest(not_found=count):
                submitter = TransactionSubmitter(self.context)
                responses = [_not_found() for _ in range(count)] + [self.success()]
                sleep = AsyncMock()
                with patch.object(
                    SorobanRpcClient, "get_transaction", side_effect=responses
                ) as get, patch.object(asyncio, "sleep", sleep):
                    result = await submitter.await_result(
                        self.tx_hash, 0.25, TIMEOUT_INFINITE
                    )
                self.assertIsInstance(result, Success)
                self.assertEqual(get.call_count, count + 1)
                self.assertEqual(sleep.call_count, count)
                self.assertEqual(
                    submitter.state(self.tx_hash), SubmissionState.CONFIRMED_SUCCESS
                )

    async def test_invalid_polling_arguments(self):
        with patch.object(SorobanRpcClient, "get_transaction") as get:
            for interval in [-1, "fast", True]:
                with self.subTest(poll_interval=interval):
                    with self.assertRaises(InvalidInputError):
                        await self.submitter.await_result(self.tx_hash, interval, 3)
            for attempts in [0, -2, "forever", 2.5, True]:
                with self.subTest(max_attempts=attempts):
                    with self.assertRaises(InvalidInputError):
                        await self.submitter.await_result(self.tx_hash, 1.0, attempts)
        get.assert_not_called()

    async def test_timeout(self):
        with patch.object(
            SorobanRpcClient, "send_transaction", return_value=self.pending
        ), patch.object(
            SorobanRpcClient, "get_transaction", return_value=_not_found()
        ) as get, patch.object(asyncio, "sleep", AsyncMock()):
            with self.assertRaises(PollingTimeoutError) as cm:
                await self.submitter.submit_and_await(self.signed, 0, 3)
        self.assertEqual(get.call_count, 3)
        self.assertEqual(cm.exception.result, Unknown(self.tx_hash, 3))
        self.assertEqual(
            self.submitter.state(self.tx_hash), SubmissionState.NOT_FOUND_TIMEOUT
        )
        self.assertIsNone(self.submitter.result(self.tx_hash))

    async def test_rejected_without_polling(self):
        rejected = SendTransactionResponse(
            self.tx_hash, SendTransactionStatus.ERROR, 100, _result_xdr(-5)
        )
        with patch.object(
            SorobanRpcClient, "send_transaction", return_value=rejected
        ), patch.object(SorobanRpcClient, "get_transaction") as get:
            with self.assertRaises(SubmissionRejectedError) as cm:
                await self.submitter.submit_and_await(self.signed)
        get.assert_not_called()
        self.assertEqual(
            cm.exception.result_code, stellar_xdr.TransactionResultCode.txBAD_SEQ
        )
        self.assertEqual(cm.exception.status, "ERROR")
        self.assertEqual(self.submitter.state(self.tx_hash), SubmissionState.BUILT)

    async def test_failed(self):
        failed = GetTransactionResponse(
            GetTransactionStatus.FAILED, 105, ledger=104, result_xdr=_result_xdr(-1)
        )
        with patch.object(
            SorobanRpcClient, "send_transaction", return_value=self.pending
        ), patch.object(SorobanRpcClient, "get_transaction", return_value=failed):
            result = await self.submitter.submit_and_await(self.signed)
        self.assertIsInstance(result, Failed)
        self.assertEqual(
            result.result_code, stellar_xdr.TransactionResultCode.txFAILED
        )
        self.assertEqual(
            self.submitter.state(self.tx_hash), SubmissionState.CONFIRMED_FAILED
        )

    async def test_resubmission(self):
        with patch.object(
            SorobanRpcClient, "send_transaction", return_value=self.pending
        ) as send, patch.object(
            SorobanRpcClient, "get_transaction", return_value=self.success()
        ):
            await self.submitter.submit_and_await(self.signed)
            with self.assertRaises(InvalidInputError):
                await self.submitter.submit_and_await(self.signed)
        self.assertEqual(send.call_count, 1)

    async def test_cached_result(self):
        with patch.object(
            SorobanRpcClient, "send_transaction", return_value=self.pending
        ), patch.object(
            SorobanRpcClient, "get_transaction", return_value=self.success()
        ) as get:
            first = await self.submitter.submit_and_await(self.signed)
            second = await self.submitter.await_result(self.tx_hash)
        self.assertIs(first, second)
        self.assertEqual(get.call_count, 1)
