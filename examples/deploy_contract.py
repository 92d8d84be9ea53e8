# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Deploy a contract: upload its WASM, create an instance and read its interface.

Workflow:
    1. **Upload**: ``UploadCode`` installs the WASM and returns its hash
    2. **Create**: ``CreateContract`` instantiates the code, returning the
       new contract address
    3. **Inspect**: the contract spec is read back from the ledger

Usage::

    python -m examples.deploy_contract ./soroban_increment_contract.wasm
"""

import asyncio
import logging
import os
import sys

from soroban_snippets.contract import get_contract_spec
from soroban_snippets.contract_spec import function_names
from soroban_snippets.lifecycle import run_transaction
from soroban_snippets.operations import CreateContract, UploadCode
from soroban_snippets.signing import KeypairSigner

from .common import create_context, fund_account, load_keypair


async def main(wasm_path: str):
    context = create_context()
    signer = KeypairSigner(load_keypair())
    await fund_account(signer.address)

    print("\n=== Account ===")
    print(f"Deployer: {signer.address}")

    with open(wasm_path, "rb") as f:
        wasm = f.read()

    uploaded = await run_transaction(
        context, signer.address, [UploadCode(wasm)], signer
    )
    wasm_hash = uploaded.unwrap()
    print("\n=== Uploaded ===")
    print(f"WASM hash: {wasm_hash}")

    created = await run_transaction(
        context,
        signer.address,
        [CreateContract(wasm_hash, signer.address, salt=os.urandom(32))],
        signer,
    )
    contract_id = created.unwrap()
    print("\n=== Created ===")
    print(f"Contract: {contract_id}")

    spec = await get_contract_spec(context.endpoint, contract_id)
    print("\n=== Interface ===")
    for name in function_names(spec):
        print(f"fn {name}")

    await context.endpoint.close()


if __name__ == "__main__":
    assert len(sys.argv) == 2, "Expecting the path of a WASM file"
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main(sys.argv[1]))
