# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Call a contract function, then read the contract's storage and events.

The default function is ``increment`` of the Soroban increment example
contract, which returns the new value of its counter.

Usage::

    SOROBAN_CONTRACT_ID=C... python -m examples.invoke_contract [function]
"""

import asyncio
import logging
import sys

from soroban_snippets.contract import get_contract_storage
from soroban_snippets.lifecycle import Outcome, run_transaction
from soroban_snippets.operations import InvokeContract
from soroban_snippets.result_decoder import to_native
from soroban_snippets.signing import KeypairSigner

from .common import CONTRACT_ID, create_context, fund_account, load_keypair


def report(outcome: Outcome):
    print(f"Done: {'ok' if outcome.ok else outcome.error}")


async def main(contract_id: str, function_name: str):
    context = create_context()
    signer = KeypairSigner(load_keypair())
    await fund_account(signer.address)

    outcome = await run_transaction(
        context,
        signer.address,
        [InvokeContract(contract_id, function_name)],
        signer,
        on_complete=report,
    )
    print(f"\n=== {function_name} ===")
    print(f"Returned: {outcome.unwrap()}")

    print("\n=== Storage ===")
    for key, value in (await get_contract_storage(context.endpoint, contract_id)).items():
        print(f"{key}: {value}")

    latest = await context.endpoint.get_latest_ledger()
    events = await context.endpoint.get_events(
        start_ledger=max(1, latest["sequence"] - 100),
        filters=[{"type": "contract", "contractIds": [contract_id]}],
        limit=10,
    )
    print("\n=== Events ===")
    for event in events:
        topics = [to_native(x) for x in event.topic_values()]
        print(f"ledger {event.ledger}: {topics} {to_native(event.value_scval())}")

    await context.endpoint.close()


if __name__ == "__main__":
    assert CONTRACT_ID, "Expecting SOROBAN_CONTRACT_ID to be set"
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main(CONTRACT_ID, sys.argv[1] if len(sys.argv) > 1 else "increment"))
