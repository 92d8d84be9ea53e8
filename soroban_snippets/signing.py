# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Signing gateway.

Signing is delegated to an external collaborator (a wallet, a hardware key, a
remote key holder) described by the :class:`Signer` protocol. The collaborator
receives the base64 XDR of the unsigned envelope together with the network
passphrase and answers with a :class:`SignerReply`: either the signed envelope
or an error, mirroring what browser wallet extensions return.

:class:`SigningGateway` checks the reply (same transaction, a valid signature
from the requested address) and wraps it into a :class:`SignedEnvelope`. It
never retries and :meth:`SigningGateway.sign` never talks to the RPC endpoint;
a rejected request has to be rebuilt and asked for again.

:class:`KeypairSigner` is a local collaborator for scripts and tests::

    signer = KeypairSigner(Keypair.from_secret("S..."))
    signed = await SigningGateway(context).sign(envelope, signer.address, signer)

A contract call that requires the authorization of an address other than the
source account carries an authorization entry for that address, which its
owner signs separately with :meth:`SigningGateway.authorize`. Simulate again
afterwards so the resources cover the signature check::

    envelope = await builder.prepare(envelope)
    envelope = await gateway.authorize(envelope, KeypairSigner(second_keypair))
    envelope = await builder.prepare(envelope)
    signed = await gateway.sign(envelope, source.address, source)
"""

from __future__ import annotations

import asyncio
import logging
import unittest
from dataclasses import dataclass
from typing import List, Optional
from unittest.mock import AsyncMock, patch

import httpx
from stellar_sdk import (
    Address,
    InvokeHostFunction,
    Keypair,
    StrKey,
    TransactionEnvelope,
    scval,
)
from stellar_sdk.auth import authorize_entry
from stellar_sdk import xdr as stellar_xdr
from stellar_sdk.exceptions import BadSignatureError
from typing_extensions import Protocol

from .account import AccountSnapshot
from .async_client import ClientConfig, SorobanRpcClient
from .context import ClientContext
from .envelope import Envelope, EnvelopeBuilder
from .errors import InvalidInputError, SigningRejectedError, SigningUnavailableError
from .operations import InvokeContract

logger = logging.getLogger(__name__)

USER_DECLINED = "User declined access"

# Ledgers an authorization signature stays valid for, roughly 14 hours
AUTH_VALIDITY_LEDGERS = 10000


@dataclass(frozen=True)
class SignerReply:
    signed_envelope_xdr: Optional[str] = None
    error: Optional[str] = None


class Signer(Protocol):
    """An external key holder able to sign envelopes."""

    async def sign_transaction(
        self, envelope_xdr: str, network_passphrase: str, address: str
    ) -> SignerReply:
        """
        Sign the base64 XDR envelope for ``address`` on the given network.

        Declining (for example the user closing the prompt) is reported through
        :attr:`SignerReply.error`. Failing to reach the key holder raises
        ``OSError``, ``asyncio.TimeoutError`` or ``httpx.TransportError``.
        """
        ...


class AuthEntrySigner(Protocol):
    """A key holder able to sign Soroban authorization entries for its address."""

    @property
    def address(self) -> str:
        ...

    async def authorize_entry(
        self,
        entry: stellar_xdr.SorobanAuthorizationEntry,
        valid_until_ledger: int,
        network_passphrase: str,
    ) -> stellar_xdr.SorobanAuthorizationEntry:
        ...


class KeypairSigner:
    """Signs with a local keypair; declines requests for any other address."""

    keypair: Keypair

    def __init__(self, keypair: Keypair):
        self.keypair = keypair

    @property
    def address(self) -> str:
        return self.keypair.public_key

    async def sign_transaction(
        self, envelope_xdr: str, network_passphrase: str, address: str
    ) -> SignerReply:
        if address != self.address:
            return SignerReply(error=f"No key for {address}")
        envelope = TransactionEnvelope.from_xdr(envelope_xdr, network_passphrase)
        envelope.sign(self.keypair)
        return SignerReply(signed_envelope_xdr=envelope.to_xdr())

    async def authorize_entry(
        self,
        entry: stellar_xdr.SorobanAuthorizationEntry,
        valid_until_ledger: int,
        network_passphrase: str,
    ) -> stellar_xdr.SorobanAuthorizationEntry:
        return authorize_entry(entry, self.keypair, valid_until_ledger, network_passphrase)


class SignedEnvelope:
    """An envelope plus its signatures, submitted at most once."""

    envelope: Envelope
    transaction_envelope: TransactionEnvelope
    signer_address: str
    consumed: bool

    def __init__(
        self,
        envelope: Envelope,
        transaction_envelope: TransactionEnvelope,
        signer_address: str,
    ):
        self.envelope = envelope
        self.transaction_envelope = transaction_envelope
        self.signer_address = signer_address
        self.consumed = False

    def __str__(self) -> str:
        return f"SignedEnvelope[{self.hash_hex()}]"

    @property
    def signatures(self) -> List:
        return list(self.transaction_envelope.signatures)

    def to_xdr(self) -> str:
        return self.transaction_envelope.to_xdr()

    def hash_hex(self) -> str:
        return self.transaction_envelope.hash_hex()

    def consume(self) -> str:
        """Mark the envelope as submitted and return its XDR.

        :raises InvalidInputError: If it has already been submitted
        """
        if self.consumed:
            raise InvalidInputError(
                f"{self} was already submitted, build a new envelope to retry"
            )
        self.consumed = True
        return self.to_xdr()


def _signed_by(transaction_envelope: TransactionEnvelope, address: str) -> bool:
    keypair = Keypair.from_public_key(address)
    tx_hash = transaction_envelope.hash()
    for signature in transaction_envelope.signatures:
        if signature.signature_hint != keypair.signature_hint():
            continue
        try:
            keypair.verify(tx_hash, signature.signature)
            return True
        except BadSignatureError:
            continue
    return False


def _entry_address(entry: stellar_xdr.SorobanAuthorizationEntry) -> Optional[str]:
    credentials = entry.credentials
    if credentials.type != stellar_xdr.SorobanCredentialsType.SOROBAN_CREDENTIALS_ADDRESS:
        return None
    return Address.from_xdr_sc_address(credentials.address.address).address


class SigningGateway:
    context: ClientContext

    def __init__(self, context: ClientContext):
        self.context = context

    async def sign(
        self, envelope: Envelope, signer_address: str, signer: Optional[Signer]
    ) -> SignedEnvelope:
        """
        Ask ``signer`` to sign ``envelope`` as ``signer_address``.

        :raises SigningUnavailableError: If there is no signer or it cannot be reached
        :raises SigningRejectedError: If the signer declines or returns anything
            other than this envelope signed by ``signer_address``
        :raises InvalidInputError: If ``signer_address`` is not an account address
        """
        if not StrKey.is_valid_ed25519_public_key(signer_address):
            raise InvalidInputError(f"Invalid signer address {signer_address!r}")
        if signer is None:
            raise SigningUnavailableError("No signer configured")
        try:
            reply = await signer.sign_transaction(
                envelope.to_xdr(), envelope.network_passphrase, signer_address
            )
        except (OSError, asyncio.TimeoutError, httpx.TransportError) as e:
            raise SigningUnavailableError(f"Signer unreachable: {e}") from e

        if reply.error is not None:
            logger.warning("signing of %s rejected: %s", envelope, reply.error)
            raise SigningRejectedError(reply.error)
        if not reply.signed_envelope_xdr:
            raise SigningRejectedError("Signer returned no envelope")
        try:
            signed = TransactionEnvelope.from_xdr(
                reply.signed_envelope_xdr, envelope.network_passphrase
            )
        except (ValueError, EOFError) as e:
            raise SigningRejectedError(f"Signer returned invalid XDR: {e}") from e
        if signed.hash() != envelope.hash():
            raise SigningRejectedError("Signer returned a different transaction")
        if not _signed_by(signed, signer_address):
            raise SigningRejectedError(f"No valid signature from {signer_address}")

        logger.debug("%s signed by %s", envelope, signer_address)
        return SignedEnvelope(envelope, signed, signer_address)

    async def authorize(
        self,
        envelope: Envelope,
        signer: AuthEntrySigner,
        valid_for_ledgers: int = AUTH_VALIDITY_LEDGERS,
    ) -> Envelope:
        """
        Have ``signer`` sign the authorization entries of ``envelope`` that
        name its address, returning a new envelope.

        Entries for the source account or for other addresses are kept as
        they are. The signatures expire ``valid_for_ledgers`` ledgers after
        the latest ledger of the endpoint.

        :raises InvalidInputError: If the envelope does not invoke a host
            function or holds no entry for the signer's address
        :raises SigningUnavailableError: If the signer cannot be reached
        :raises SigningRejectedError: If the signer returns an entry that is
            not signed for its address
        """
        if valid_for_ledgers <= 0:
            raise InvalidInputError("valid_for_ledgers must be positive")
        operation = envelope.transaction_envelope.transaction.operations[0]
        if not isinstance(operation, InvokeHostFunction):
            raise InvalidInputError("Only host function invocations carry auth")
        entries = list(operation.auth)
        pending = [
            i for i, entry in enumerate(entries) if _entry_address(entry) == signer.address
        ]
        if not pending:
            raise InvalidInputError(
                f"{envelope} has no authorization entry for {signer.address}"
            )

        latest = await self.context.endpoint.get_latest_ledger()
        valid_until = latest["sequence"] + valid_for_ledgers
        for i in pending:
            try:
                signed = await signer.authorize_entry(
                    entries[i], valid_until, envelope.network_passphrase
                )
            except (OSError, asyncio.TimeoutError, httpx.TransportError) as e:
                raise SigningUnavailableError(f"Signer unreachable: {e}") from e
            if (
                _entry_address(signed) != signer.address
                or signed.credentials.address.signature.type
                == stellar_xdr.SCValType.SCV_VOID
            ):
                raise SigningRejectedError(
                    f"Signer returned an unsigned entry for {signer.address}"
                )
            entries[i] = signed

        logger.info(
            "%s authorized by %s until ledger %s", envelope, signer.address, valid_until
        )
        return envelope.with_auth(entries)


class _CancellingSigner:
    async def sign_transaction(
        self, envelope_xdr: str, network_passphrase: str, address: str
    ) -> SignerReply:
        return SignerReply(error=USER_DECLINED)


class _UnreachableSigner:
    async def sign_transaction(
        self, envelope_xdr: str, network_passphrase: str, address: str
    ) -> SignerReply:
        raise ConnectionRefusedError("wallet extension not installed")


class Test(unittest.IsolatedAsyncioTestCase):
    CONTRACT = "CDLZFC3SYJYDZT7K67VZ75HPJVIEUVNIXF47ZG2FB2RMQQVU2HHGCYSC"

    async def asyncSetUp(self):
        self.client = SorobanRpcClient("https://rpc.test", ClientConfig(http2=False))
        self.context = ClientContext.from_client(self.client)
        self.keypair = Keypair.random()
        self.signer = KeypairSigner(self.keypair)
        self.gateway = SigningGateway(self.context)
        self.envelope = EnvelopeBuilder(self.context).build(
            AccountSnapshot(self.keypair.public_key, 1),
            [InvokeContract(self.CONTRACT, "hello")],
            100,
        )

    async def asyncTearDown(self):
        await self.client.close()

    async def test_sign(self):
        signed = await self.gateway.sign(
            self.envelope, self.signer.address, self.signer
        )
        self.assertEqual(signed.hash_hex(), self.envelope.hash_hex())
        self.assertEqual(len(signed.signatures), 1)
        self.assertFalse(signed.consumed)
        self.assertEqual(signed.consume(), signed.to_xdr())
        with self.assertRaises(InvalidInputError):
            signed.consume()

    async def test_user_cancel(self):
        with patch.object(SorobanRpcClient, "_rpc") as rpc:
            with self.assertRaises(SigningRejectedError) as cm:
                await self.gateway.sign(
                    self.envelope, self.signer.address, _CancellingSigner()
                )
        self.assertEqual(cm.exception.reason, USER_DECLINED)
        rpc.assert_not_called()

    async def test_unavailable(self):
        with self.assertRaises(SigningUnavailableError):
            await self.gateway.sign(
                self.envelope, self.signer.address, _UnreachableSigner()
            )
        with self.assertRaises(SigningUnavailableError):
            await self.gateway.sign(self.envelope, self.signer.address, None)

    async def test_wrong_address(self):
        other = Keypair.random().public_key
        with self.assertRaises(SigningRejectedError):
            await self.gateway.sign(self.envelope, other, self.signer)

    async def test_signature_from_other_key(self):
        impostor = KeypairSigner(Keypair.random())

        class ForgingSigner:
            async def sign_transaction(self, envelope_xdr, network_passphrase, address):
                return await impostor.sign_transaction(
                    envelope_xdr, network_passphrase, impostor.address
                )

        with self.assertRaises(SigningRejectedError):
            await self.gateway.sign(
                self.envelope, self.keypair.public_key, ForgingSigner()
            )

    async def test_different_transaction(self):
        other = EnvelopeBuilder(self.context).build(
            AccountSnapshot(self.keypair.public_key, 2),
            [InvokeContract(self.CONTRACT, "hello")],
            100,
        )
        signed_other = await self.signer.sign_transaction(
            other.to_xdr(), other.network_passphrase, self.signer.address
        )

        class StaleSigner:
            async def sign_transaction(self, envelope_xdr, network_passphrase, address):
                return signed_other

        with self.assertRaises(SigningRejectedError):
            await self.gateway.sign(
                self.envelope, self.signer.address, StaleSigner()
            )

    async def test_contract_address_as_signer(self):
        keypair_signer = self.signer

        class Wallet:
            async def sign_transaction(self, envelope_xdr, network_passphrase, address):
                return await keypair_signer.sign_transaction(
                    envelope_xdr, network_passphrase, keypair_signer.address
                )

        for address in [self.CONTRACT, "GABC", ""]:
            with self.subTest(address=address):
                with self.assertRaises(InvalidInputError):
                    await self.gateway.sign(self.envelope, address, Wallet())

    def invocation(self) -> stellar_xdr.SorobanAuthorizedInvocation:
        return stellar_xdr.SorobanAuthorizedInvocation(
            function=stellar_xdr.SorobanAuthorizedFunction(
                stellar_xdr.SorobanAuthorizedFunctionType.SOROBAN_AUTHORIZED_FUNCTION_TYPE_CONTRACT_FN,
                contract_fn=stellar_xdr.InvokeContractArgs(
                    contract_address=Address(self.CONTRACT).to_xdr_sc_address(),
                    function_name=stellar_xdr.SCSymbol(b"set_admin"),
                    args=[],
                ),
            ),
            sub_invocations=[],
        )

    def source_entry(self) -> stellar_xdr.SorobanAuthorizationEntry:
        return stellar_xdr.SorobanAuthorizationEntry(
            credentials=stellar_xdr.SorobanCredentials(
                stellar_xdr.SorobanCredentialsType.SOROBAN_CREDENTIALS_SOURCE_ACCOUNT
            ),
            root_invocation=self.invocation(),
        )

    def address_entry(self, address: str) -> stellar_xdr.SorobanAuthorizationEntry:
        return stellar_xdr.SorobanAuthorizationEntry(
            credentials=stellar_xdr.SorobanCredentials(
                stellar_xdr.SorobanCredentialsType.SOROBAN_CREDENTIALS_ADDRESS,
                address=stellar_xdr.SorobanAddressCredentials(
                    address=Address(address).to_xdr_sc_address(),
                    nonce=stellar_xdr.Int64(7),
                    signature_expiration_ledger=stellar_xdr.Uint32(0),
                    signature=scval.to_void(),
                ),
            ),
            root_invocation=self.invocation(),
        )

    def set_admin(self, admin: str) -> Envelope:
        return EnvelopeBuilder(self.context).build(
            AccountSnapshot(self.keypair.public_key, 1),
            [
                InvokeContract(
                    self.CONTRACT,
                    "set_admin",
                    (scval.to_address(Address(admin)),),
                    (self.source_entry(), self.address_entry(admin)),
                )
            ],
            100,
        )

    async def test_authorize_second_address(self):
        admin = KeypairSigner(Keypair.random())
        envelope = self.set_admin(admin.address)
        with patch.object(
            SorobanRpcClient, "get_latest_ledger", return_value={"sequence": 100}
        ):
            authorized = await self.gateway.authorize(envelope, admin)

        entries = authorized.transaction_envelope.transaction.operations[0].auth
        self.assertEqual(entries[0], self.source_entry())
        credentials = entries[1].credentials.address
        self.assertEqual(credentials.signature_expiration_ledger.uint32, 10100)
        self.assertEqual(credentials.signature.type, stellar_xdr.SCValType.SCV_VEC)
        self.assertNotEqual(authorized.hash(), envelope.hash())

        original = envelope.transaction_envelope.transaction.operations[0].auth[1]
        self.assertEqual(
            original.credentials.address.signature.type,
            stellar_xdr.SCValType.SCV_VOID,
        )

        signed = await self.gateway.sign(authorized, self.signer.address, self.signer)
        self.assertEqual(signed.hash_hex(), authorized.hash_hex())

    async def test_authorize_without_entry(self):
        stranger = KeypairSigner(Keypair.random())
        envelope = self.set_admin(Keypair.random().public_key)
        with patch.object(SorobanRpcClient, "get_latest_ledger") as latest:
            with self.assertRaises(InvalidInputError):
                await self.gateway.authorize(envelope, stranger)
            with self.assertRaises(InvalidInputError):
                await self.gateway.authorize(self.envelope, stranger)
        latest.assert_not_called()

    async def test_authorize_unreachable(self):
        admin = KeypairSigner(Keypair.random())
        envelope = self.set_admin(admin.address)
        unreachable = AsyncMock(side_effect=ConnectionRefusedError("offline"))
        with patch.object(
            SorobanRpcClient, "get_latest_ledger", return_value={"sequence": 100}
        ), patch.object(KeypairSigner, "authorize_entry", unreachable):
            with self.assertRaises(SigningUnavailableError):
                await self.gateway.authorize(envelope, admin)
