# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Read-only account snapshots.

An :class:`AccountSnapshot` is what the builder needs to know about a source
account: its public key and the sequence number currently recorded on the
ledger. The network owns the real account; the client only ever holds a copy
fetched right before building an envelope.

Sequence numbers are consumed at most once. Two envelopes built from the same
snapshot carry the same sequence number and only one of them can be applied,
so fetch a fresh snapshot for every envelope::

    snapshot = await client.get_account("GBHAOSNA...")
    envelope = builder.build(snapshot, [operation], fee=100)
"""

from __future__ import annotations

import unittest
from dataclasses import dataclass

from stellar_sdk import Account, Keypair
from stellar_sdk import xdr as stellar_xdr
from stellar_sdk.exceptions import Ed25519PublicKeyInvalidError

from .errors import InvalidInputError


@dataclass(frozen=True)
class AccountSnapshot:
    """An account id (``G...`` strkey) and its on-chain sequence number."""

    account_id: str
    sequence: int

    @property
    def next_sequence(self) -> int:
        """The sequence number the next transaction from this account must use."""
        return self.sequence + 1

    def to_sdk_account(self) -> Account:
        """Return a new, mutable SDK account primed with this snapshot.

        The SDK's transaction builder bumps the sequence of the account it is
        given, so every build gets its own copy.
        """
        return Account(self.account_id, self.sequence)

    def __str__(self) -> str:
        return f"{self.account_id}@{self.sequence}"


def account_ledger_key(account_id: str) -> stellar_xdr.LedgerKey:
    """Build the ledger key used to look up an account entry."""
    try:
        keypair = Keypair.from_public_key(account_id)
    except Ed25519PublicKeyInvalidError as e:
        raise InvalidInputError(f"Invalid account id {account_id!r}: {e}") from e
    return stellar_xdr.LedgerKey(
        stellar_xdr.LedgerEntryType.ACCOUNT,
        account=stellar_xdr.LedgerKeyAccount(keypair.xdr_account_id()),
    )


class Test(unittest.TestCase):
    def test_next_sequence(self):
        snapshot = AccountSnapshot(Keypair.random().public_key, 41)
        self.assertEqual(snapshot.next_sequence, 42)

    def test_sdk_account_is_a_copy(self):
        snapshot = AccountSnapshot(Keypair.random().public_key, 7)
        account = snapshot.to_sdk_account()
        account.increment_sequence_number()
        self.assertEqual(account.sequence, 8)
        self.assertEqual(snapshot.sequence, 7)

    def test_account_ledger_key(self):
        keypair = Keypair.random()
        key = account_ledger_key(keypair.public_key)
        self.assertEqual(key.type, stellar_xdr.LedgerEntryType.ACCOUNT)
        self.assertEqual(key.account.account_id, keypair.xdr_account_id())

    def test_invalid_account_id(self):
        with self.assertRaises(InvalidInputError):
            account_ledger_key("not-a-key")
