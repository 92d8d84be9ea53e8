# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Explicit context handed to every lifecycle component.

A :class:`ClientContext` bundles the RPC endpoint, the network passphrase the
envelopes are bound to and the coroutine used to resolve account snapshots.
Components never reach for module level state, so two contexts (for example
testnet and futurenet) can be used side by side.
"""

from __future__ import annotations

import unittest
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from stellar_sdk import Keypair, Network

from .account import AccountSnapshot
from .async_client import ClientConfig, SorobanRpcClient

AccountResolver = Callable[[str], Awaitable[AccountSnapshot]]


@dataclass(frozen=True)
class ClientContext:
    endpoint: SorobanRpcClient
    network_passphrase: str
    account_resolver: AccountResolver

    @staticmethod
    def from_client(
        client: SorobanRpcClient,
        network_passphrase: str = Network.TESTNET_NETWORK_PASSPHRASE,
        account_resolver: Optional[AccountResolver] = None,
    ) -> ClientContext:
        """Build a context resolving accounts through ``client`` unless told otherwise."""
        return ClientContext(
            client, network_passphrase, account_resolver or client.get_account
        )

    @property
    def config(self) -> ClientConfig:
        return self.endpoint.client_config

    def network_id(self) -> bytes:
        """The sha256 of the network passphrase, as used in signature payloads."""
        return Network(self.network_passphrase).network_id()

    async def resolve_account(self, account_id: str) -> AccountSnapshot:
        return await self.account_resolver(account_id)


class Test(unittest.IsolatedAsyncioTestCase):
    async def test_custom_resolver(self):
        account_id = Keypair.random().public_key

        async def resolver(address: str) -> AccountSnapshot:
            return AccountSnapshot(address, 99)

        client = SorobanRpcClient("https://rpc.test", ClientConfig(http2=False))
        context = ClientContext.from_client(client, account_resolver=resolver)
        snapshot = await context.resolve_account(account_id)
        self.assertEqual(snapshot, AccountSnapshot(account_id, 99))
        self.assertEqual(context.config.base_fee, 100)
        self.assertEqual(len(context.network_id()), 32)
        await client.close()

    def test_default_resolver_uses_client(self):
        client = SorobanRpcClient("https://rpc.test", ClientConfig(http2=False))
        context = ClientContext.from_client(client)
        self.assertEqual(context.account_resolver, client.get_account)
        self.assertEqual(
            context.network_passphrase, Network.TESTNET_NETWORK_PASSPHRASE
        )
