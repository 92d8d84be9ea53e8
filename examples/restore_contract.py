# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Restore a contract's archived entries and extend their time to live.

Both operations act on the footprint of the envelope rather than on
parameters: the ledger keys of the contract instance and of its code are
listed in the soroban data before the envelope is prepared.

Usage::

    SOROBAN_CONTRACT_ID=C... python -m examples.restore_contract [ledgers]
"""

import asyncio
import logging
import sys

from soroban_snippets.contract import (
    contract_code_key,
    contract_instance_key,
    get_contract_wasm_hash,
)
from soroban_snippets.envelope import extend_footprint_data, restore_footprint_data
from soroban_snippets.lifecycle import run_transaction
from soroban_snippets.operations import ExtendFootprint, RestoreFootprint
from soroban_snippets.signing import KeypairSigner

from .common import CONTRACT_ID, create_context, load_keypair


async def main(contract_id: str, extend_to: int):
    context = create_context()
    signer = KeypairSigner(load_keypair())

    wasm_hash = await get_contract_wasm_hash(context.endpoint, contract_id)
    keys = [contract_instance_key(contract_id), contract_code_key(wasm_hash)]

    restored = await run_transaction(
        context,
        signer.address,
        [RestoreFootprint()],
        signer,
        soroban_data=restore_footprint_data(keys),
        prepare=True,
    )
    print(f"Restored: {restored.ok} {restored.tx_hash}")

    extended = await run_transaction(
        context,
        signer.address,
        [ExtendFootprint(extend_to)],
        signer,
        soroban_data=extend_footprint_data(keys),
        prepare=True,
    )
    print(f"Extended by {extend_to} ledgers: {extended.ok} {extended.tx_hash}")

    await context.endpoint.close()


if __name__ == "__main__":
    assert CONTRACT_ID, "Expecting SOROBAN_CONTRACT_ID to be set"
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main(CONTRACT_ID, int(sys.argv[1]) if len(sys.argv) > 1 else 100_000))
