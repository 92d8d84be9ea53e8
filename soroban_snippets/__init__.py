# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
soroban-snippets - A Python client for the Soroban transaction lifecycle.

Every interaction with a Soroban smart contract on the Stellar network follows
the same path: build an envelope, have it signed, submit it to an RPC
endpoint, wait until it settles and read the typed result out of the XDR
metadata. This package implements that path once, with explicit failure
modes at every step, on top of the XDR types and keypairs of ``stellar-sdk``.

Core Features:
- **Envelope Builder**: Deterministic, pure construction of unsigned envelopes
- **Signing Gateway**: Delegation to wallets or local keypairs, with checks
- **Submission State Machine**: Submit, then poll until the network decides
- **Result Decoder**: Return values, WASM hashes and contract addresses
- **Contract Inspection**: WASM, interface (contract spec) and storage
- **Async RPC Client**: JSON-RPC 2.0 over ``httpx``

Lifecycle:
    ``EnvelopeBuilder.build`` -> ``SigningGateway.sign`` ->
    ``TransactionSubmitter.submit_and_await`` -> ``decode``

    Each component receives a ``ClientContext`` (endpoint, network
    passphrase, account resolver); there is no module level state.

Quick Start:
    Calling a contract function step by step::

        import asyncio
        from stellar_sdk import Keypair, Network

        from soroban_snippets.async_client import SorobanRpcClient
        from soroban_snippets.context import ClientContext
        from soroban_snippets.envelope import EnvelopeBuilder
        from soroban_snippets.operations import InvokeContract
        from soroban_snippets.result_decoder import decode
        from soroban_snippets.signing import KeypairSigner, SigningGateway
        from soroban_snippets.submission import TransactionSubmitter

        async def main():
            client = SorobanRpcClient("https://soroban-testnet.stellar.org")
            context = ClientContext.from_client(
                client, Network.TESTNET_NETWORK_PASSPHRASE
            )
            signer = KeypairSigner(Keypair.from_secret("S..."))

            builder = EnvelopeBuilder(context)
            account = await context.resolve_account(signer.address)
            envelope = builder.build(
                account, [InvokeContract("CB...", "increment")], fee=100
            )
            envelope = await builder.prepare(envelope)

            signed = await SigningGateway(context).sign(
                envelope, signer.address, signer
            )
            result = await TransactionSubmitter(context).submit_and_await(signed)
            print(decode(result).value)

            await client.close()

        asyncio.run(main())

    The same in one call::

        from soroban_snippets.lifecycle import run_transaction

        outcome = await run_transaction(
            context, signer.address, [InvokeContract("CB...", "increment")], signer
        )
        print(outcome.value if outcome.ok else outcome.error)

Module Organization:
    Lifecycle:
    - **envelope**: Envelope construction, preparation and footprints
    - **operations**: The closed set of supported operations
    - **signing**: Signer protocol, keypair signer and signing gateway
    - **submission**: Submission and polling state machine
    - **result_decoder**: Typed outcomes from result metadata
    - **lifecycle**: All of the above in one call

    Contracts:
    - **contract**: Contract instance, code, interface and storage lookups
    - **contract_spec**: Decoding of ``SCSpecEntry`` records
    - **wasm**: WebAssembly custom section reader

    Plumbing:
    - **async_client**: Soroban RPC client and configuration
    - **context**: Explicit client context
    - **account**: Account snapshots and ledger keys
    - **errors**: Exception hierarchy
    - **metadata**: Package version and HTTP client headers

Configuration:
    ``ClientConfig`` holds the base fee, envelope timeout and polling
    cadence. Envelopes never expire and polling never gives up unless told
    otherwise::

        ClientConfig(transaction_timeout=300, max_poll_attempts=60)

Development:
    Running tests::

        pip install -e ".[test]"
        python -m pytest
        behave

License:
    Apache License 2.0
"""
