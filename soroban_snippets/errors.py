# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Exception hierarchy for the transaction lifecycle.

Every failure raised by this package derives from :class:`SorobanError` so
callers can catch the whole family at once, while each stage of the lifecycle
raises its own type:

- **Building**: :class:`InvalidInputError`
- **Preparing**: :class:`SimulationFailedError`
- **Signing**: :class:`SigningRejectedError`, :class:`SigningUnavailableError`
- **Submitting**: :class:`SubmissionRejectedError`, :class:`PollingTimeoutError`
- **Decoding**: :class:`UnexpectedResultShapeError`, :class:`TransactionFailedError`
- **Transport**: :class:`RpcError`, :class:`AccountNotFound`, :class:`LedgerEntryNotFound`

None of these are retried by the library. A rejected or timed out submission
can only be retried with a freshly built envelope, since sequence numbers are
consumed at most once.
"""

from typing import Any, Optional


class SorobanError(Exception):
    """Base class for all errors raised by soroban_snippets."""


class InvalidInputError(SorobanError):
    """A call was made with arguments that can never succeed."""


class SimulationFailedError(SorobanError):
    """The endpoint could not simulate the transaction."""

    error: str

    def __init__(self, error: str):
        super().__init__(f"Transaction simulation failed: {error}")
        self.error = error


class SigningRejectedError(SorobanError):
    """The signer declined to sign, e.g. the user cancelled the request."""

    reason: str

    def __init__(self, reason: str):
        super().__init__(f"Signing rejected: {reason}")
        self.reason = reason


class SigningUnavailableError(SorobanError):
    """The signer could not be reached."""


class SubmissionRejectedError(SorobanError):
    """The endpoint refused the transaction outright, no polling took place.

    ``result`` holds the decoded ``TransactionResult`` XDR when the endpoint
    provided one and ``result_code`` its ``TransactionResultCode``.
    """

    tx_hash: str
    status: str
    result: Optional[Any]
    result_code: Optional[Any]

    def __init__(
        self,
        tx_hash: str,
        status: str,
        result: Optional[Any] = None,
        result_code: Optional[Any] = None,
    ):
        detail = f" ({result_code.name})" if result_code is not None else ""
        super().__init__(f"Transaction {tx_hash} rejected with {status}{detail}")
        self.tx_hash = tx_hash
        self.status = status
        self.result = result
        self.result_code = result_code


class PollingTimeoutError(SorobanError):
    """The transaction status did not resolve within the attempt budget.

    The transaction may still be applied by the network later on.
    """

    tx_hash: str
    attempts: int
    result: Any

    def __init__(self, tx_hash: str, attempts: int, result: Any):
        super().__init__(
            f"Transaction {tx_hash} still not found after {attempts} attempts"
        )
        self.tx_hash = tx_hash
        self.attempts = attempts
        self.result = result


class TransactionFailedError(SorobanError):
    """A successful outcome was requested from a transaction that failed on-chain."""

    tx_hash: str
    result_code: Any

    def __init__(self, tx_hash: str, result_code: Any):
        name = getattr(result_code, "name", result_code)
        super().__init__(f"Transaction {tx_hash} failed with {name}")
        self.tx_hash = tx_hash
        self.result_code = result_code


class UnexpectedResultShapeError(SorobanError):
    """The result metadata does not match the operation that was submitted."""


class RpcError(SorobanError):
    """The RPC endpoint returned an error status or a JSON-RPC error object."""

    status_code: int

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class AccountNotFound(SorobanError):
    """The account does not exist on the ledger."""

    account_id: str

    def __init__(self, account_id: str):
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id


class LedgerEntryNotFound(SorobanError):
    """A ledger entry lookup returned no entry, e.g. it expired or never existed."""

    key: str

    def __init__(self, message: str, key: str):
        super().__init__(message)
        self.key = key
