# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Deploy the Stellar Asset Contract of a classic asset.

The address of an asset contract is derived from the asset and the network,
so it is printed before deployment and compared with what the network returns.
An asset issued by the source account itself is used when no issuer is given.

Usage::

    python -m examples.wrap_asset [code] [issuer]
"""

import asyncio
import logging
import sys

from stellar_sdk import Asset

from soroban_snippets.contract import asset_contract_id
from soroban_snippets.lifecycle import run_transaction
from soroban_snippets.operations import CreateAssetContract
from soroban_snippets.signing import KeypairSigner

from .common import NETWORK_PASSPHRASE, create_context, fund_account, load_keypair


async def main(code: str, issuer: str):
    context = create_context()
    signer = KeypairSigner(load_keypair())
    await fund_account(signer.address)

    asset = Asset(code, issuer or signer.address)
    expected = asset_contract_id(asset, NETWORK_PASSPHRASE)
    print(f"Expected contract: {expected}")

    outcome = await run_transaction(
        context, signer.address, [CreateAssetContract(asset)], signer
    )
    print(f"Deployed contract: {outcome.unwrap()}")

    await context.endpoint.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asset_code = sys.argv[1] if len(sys.argv) > 1 else "SNIPPET"
    asset_issuer = sys.argv[2] if len(sys.argv) > 2 else ""
    asyncio.run(main(asset_code, asset_issuer))
