# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Common configuration for the soroban-snippets examples.

All settings are read from environment variables and default to the public
Stellar testnet.

Environment Variables:
    SOROBAN_RPC_URL: URL of the Soroban RPC endpoint
    SOROBAN_NETWORK_PASSPHRASE: Passphrase of the network the RPC serves
    SOROBAN_FRIENDBOT_URL: Friendbot used to fund new accounts (testnet only)
    SOROBAN_API_KEY: Bearer token for hosted RPC providers (optional)
    SOROBAN_SECRET_KEY: Secret key (``S...``) of the source account
    SOROBAN_CONTRACT_ID: Contract (``C...``) used by the invoke and restore examples

Network Configurations:
    Testnet (Default):
    - RPC: https://soroban-testnet.stellar.org
    - Passphrase: Test SDF Network ; September 2015
    - Friendbot: https://friendbot.stellar.org

    Futurenet:
    - RPC: https://rpc-futurenet.stellar.org
    - Passphrase: Test SDF Future Network ; October 2022
    - Friendbot: https://friendbot-futurenet.stellar.org
"""

import os
from typing import Optional

import httpx
from stellar_sdk import Keypair, Network

from soroban_snippets.async_client import ClientConfig, SorobanRpcClient
from soroban_snippets.context import ClientContext

# :!:>section_1
RPC_URL = os.getenv("SOROBAN_RPC_URL", "https://soroban-testnet.stellar.org")

NETWORK_PASSPHRASE = os.getenv(
    "SOROBAN_NETWORK_PASSPHRASE", Network.TESTNET_NETWORK_PASSPHRASE
)

FRIENDBOT_URL = os.getenv("SOROBAN_FRIENDBOT_URL", "https://friendbot.stellar.org")

API_KEY = os.getenv("SOROBAN_API_KEY")

SECRET_KEY = os.getenv("SOROBAN_SECRET_KEY")

CONTRACT_ID = os.getenv("SOROBAN_CONTRACT_ID")
# <:!:section_1


def create_context(config: Optional[ClientConfig] = None) -> ClientContext:
    client = SorobanRpcClient(RPC_URL, config or ClientConfig(api_key=API_KEY))
    return ClientContext.from_client(client, NETWORK_PASSPHRASE)


def load_keypair() -> Keypair:
    """The source account keypair, or a fresh one when none is configured."""
    if SECRET_KEY:
        return Keypair.from_secret(SECRET_KEY)
    return Keypair.random()


async def fund_account(address: str):
    """Ask friendbot for test lumens; an already funded account is fine."""
    async with httpx.AsyncClient() as client:
        response = await client.get(FRIENDBOT_URL, params={"addr": address})
        if response.status_code >= 400 and "createAccountAlreadyExist" not in response.text:
            response.raise_for_status()
