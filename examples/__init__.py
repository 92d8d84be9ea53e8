"""
soroban-snippets examples - runnable scripts for the transaction lifecycle.

Each script walks one of the common Soroban tasks end to end against a real
RPC endpoint (testnet by default):

    **Contracts**:
    - deploy_contract.py: Upload WASM, create an instance, read its interface
    - invoke_contract.py: Call a function, read storage and events
    - restore_contract.py: Restore and extend the TTL of a contract's entries

    **Assets**:
    - wrap_asset.py: Deploy the Stellar Asset Contract of a classic asset

    **Shared**:
    - common.py: Environment based configuration

Quick Start:
    Fund a testnet account and point the scripts at it::

        export SOROBAN_SECRET_KEY=S...
        python -m examples.deploy_contract ./increment.wasm
        export SOROBAN_CONTRACT_ID=C...
        python -m examples.invoke_contract

Safety:
    - All examples default to testnet
    - The secret key is read from the environment and never persisted
"""
