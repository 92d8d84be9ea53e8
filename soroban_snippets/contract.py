# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Read-only inspection of deployed contracts.

A contract instance lives in a persistent contract data entry keyed by
``SCV_LEDGER_KEY_CONTRACT_INSTANCE``. It references its executable by WASM
hash and holds the contract's instance storage. The WASM itself lives in a
separate contract code entry keyed by that hash::

    contract id --instance key--> ContractDataEntry
                                    executable.wasm_hash --code key--> ContractCodeEntry.code
                                    storage

The helpers below follow these links with ``getLedgerEntries`` and decode the
interface and storage of a contract.
"""

import hashlib
import unittest
from typing import Any, Dict, List
from unittest.mock import patch

from stellar_sdk import Address, Asset, Network, StrKey, scval
from stellar_sdk import xdr as stellar_xdr

from .async_client import ClientConfig, LedgerEntryResult, SorobanRpcClient
from .contract_spec import _function_entry_bytes, decode_contract_spec, function_names
from .errors import InvalidInputError, LedgerEntryNotFound
from .result_decoder import to_native, to_native_key
from .wasm import CONTRACT_SPEC_SECTION, _module_bytes, custom_section


def _contract_address(contract_id: str) -> stellar_xdr.SCAddress:
    if not StrKey.is_valid_contract(contract_id):
        raise InvalidInputError(f"Invalid contract id {contract_id!r}")
    return Address(contract_id).to_xdr_sc_address()


def contract_instance_key(contract_id: str) -> stellar_xdr.LedgerKey:
    return stellar_xdr.LedgerKey(
        stellar_xdr.LedgerEntryType.CONTRACT_DATA,
        contract_data=stellar_xdr.LedgerKeyContractData(
            contract=_contract_address(contract_id),
            key=stellar_xdr.SCVal(
                stellar_xdr.SCValType.SCV_LEDGER_KEY_CONTRACT_INSTANCE
            ),
            durability=stellar_xdr.ContractDataDurability.PERSISTENT,
        ),
    )


def contract_code_key(wasm_hash: str) -> stellar_xdr.LedgerKey:
    try:
        raw = bytes.fromhex(wasm_hash)
    except ValueError as e:
        raise InvalidInputError(f"wasm_hash is not hex: {e}") from e
    return stellar_xdr.LedgerKey(
        stellar_xdr.LedgerEntryType.CONTRACT_CODE,
        contract_code=stellar_xdr.LedgerKeyContractCode(stellar_xdr.Hash(raw)),
    )


async def _single_entry(
    client: SorobanRpcClient, key: stellar_xdr.LedgerKey, what: str
) -> LedgerEntryResult:
    entries = await client.get_ledger_entries([key])
    if not entries:
        raise LedgerEntryNotFound(f"{what} not found, it may have expired", key.to_xdr())
    return entries[0]


async def get_contract_instance(
    client: SorobanRpcClient, contract_id: str
) -> stellar_xdr.SCContractInstance:
    entry = await _single_entry(
        client, contract_instance_key(contract_id), f"Contract {contract_id}"
    )
    return entry.data().contract_data.val.instance


async def get_contract_wasm_hash(client: SorobanRpcClient, contract_id: str) -> str:
    """
    Return the hex hash of the WASM a contract runs.

    :raises InvalidInputError: If the contract is a built-in asset contract
    :raises LedgerEntryNotFound: If the contract does not exist or expired
    """
    instance = await get_contract_instance(client, contract_id)
    executable = instance.executable
    if executable.type != stellar_xdr.ContractExecutableType.CONTRACT_EXECUTABLE_WASM:
        raise InvalidInputError(f"Contract {contract_id} is not backed by WASM")
    return executable.wasm_hash.hash.hex()


async def get_contract_wasm(client: SorobanRpcClient, contract_id: str) -> bytes:
    wasm_hash = await get_contract_wasm_hash(client, contract_id)
    entry = await _single_entry(
        client, contract_code_key(wasm_hash), f"Contract code {wasm_hash}"
    )
    return entry.data().contract_code.code


async def get_contract_spec(
    client: SorobanRpcClient, contract_id: str
) -> List[stellar_xdr.SCSpecEntry]:
    """Decode the interface a contract declares in its ``contractspecv0`` section."""
    wasm = await get_contract_wasm(client, contract_id)
    spec = custom_section(wasm, CONTRACT_SPEC_SECTION)
    if spec is None:
        return []
    return decode_contract_spec(spec)


async def get_contract_storage(
    client: SorobanRpcClient, contract_id: str
) -> Dict[Any, Any]:
    """Return the instance storage of a contract as native keys and values."""
    instance = await get_contract_instance(client, contract_id)
    if instance.storage is None:
        return {}
    return {
        to_native_key(entry.key): to_native(entry.val)
        for entry in instance.storage.sc_map
    }


def asset_contract_id(asset: Asset, network_passphrase: str) -> str:
    """The address of the Stellar Asset Contract for ``asset`` on a network.

    The address is derived, so it is known before the contract is deployed.
    """
    preimage = stellar_xdr.HashIDPreimage(
        stellar_xdr.EnvelopeType.ENVELOPE_TYPE_CONTRACT_ID,
        contract_id=stellar_xdr.HashIDPreimageContractID(
            network_id=stellar_xdr.Hash(Network(network_passphrase).network_id()),
            contract_id_preimage=stellar_xdr.ContractIDPreimage(
                stellar_xdr.ContractIDPreimageType.CONTRACT_ID_PREIMAGE_FROM_ASSET,
                from_asset=asset.to_xdr_object(),
            ),
        ),
    )
    return StrKey.encode_contract(hashlib.sha256(preimage.to_xdr_bytes()).digest())


def _instance_entry(
    contract_id: str, wasm_hash: bytes, storage: Dict[str, int]
) -> LedgerEntryResult:
    instance = stellar_xdr.SCContractInstance(
        executable=stellar_xdr.ContractExecutable(
            stellar_xdr.ContractExecutableType.CONTRACT_EXECUTABLE_WASM,
            wasm_hash=stellar_xdr.Hash(wasm_hash),
        ),
        storage=stellar_xdr.SCMap(
            [
                stellar_xdr.SCMapEntry(scval.to_symbol(k), scval.to_uint32(v))
                for k, v in storage.items()
            ]
        ),
    )
    data = stellar_xdr.LedgerEntryData(
        stellar_xdr.LedgerEntryType.CONTRACT_DATA,
        contract_data=stellar_xdr.ContractDataEntry(
            ext=stellar_xdr.ExtensionPoint(0),
            contract=Address(contract_id).to_xdr_sc_address(),
            key=stellar_xdr.SCVal(
                stellar_xdr.SCValType.SCV_LEDGER_KEY_CONTRACT_INSTANCE
            ),
            durability=stellar_xdr.ContractDataDurability.PERSISTENT,
            val=stellar_xdr.SCVal(
                stellar_xdr.SCValType.SCV_CONTRACT_INSTANCE, instance=instance
            ),
        ),
    )
    key = contract_instance_key(contract_id).to_xdr()
    return LedgerEntryResult(key, data.to_xdr(), 10)


def _code_entry(wasm_hash: bytes, code: bytes) -> LedgerEntryResult:
    data = stellar_xdr.LedgerEntryData(
        stellar_xdr.LedgerEntryType.CONTRACT_CODE,
        contract_code=stellar_xdr.ContractCodeEntry(
            ext=stellar_xdr.ContractCodeEntryExt(0),
            hash=stellar_xdr.Hash(wasm_hash),
            code=code,
        ),
    )
    key = contract_code_key(wasm_hash.hex()).to_xdr()
    return LedgerEntryResult(key, data.to_xdr(), 10)


class Test(unittest.IsolatedAsyncioTestCase):
    CONTRACT = "CDLZFC3SYJYDZT7K67VZ75HPJVIEUVNIXF47ZG2FB2RMQQVU2HHGCYSC"
    WASM_HASH = bytes(range(32))

    async def asyncSetUp(self):
        self.client = SorobanRpcClient("https://rpc.test", ClientConfig(http2=False))
        spec = _function_entry_bytes("hello") + _function_entry_bytes("increment")
        self.wasm = _module_bytes({CONTRACT_SPEC_SECTION: spec})
        self.entries = [
            [_instance_entry(self.CONTRACT, self.WASM_HASH, {"COUNTER": 3})],
            [_code_entry(self.WASM_HASH, self.wasm)],
        ]

    async def asyncTearDown(self):
        await self.client.close()

    def test_asset_contract_id(self):
        self.assertEqual(
            asset_contract_id(Asset.native(), Network.TESTNET_NETWORK_PASSPHRASE),
            self.CONTRACT,
        )

    def test_keys(self):
        key = contract_instance_key(self.CONTRACT)
        self.assertEqual(key.type, stellar_xdr.LedgerEntryType.CONTRACT_DATA)
        code = contract_code_key(self.WASM_HASH.hex())
        self.assertEqual(code.contract_code.hash.hash, self.WASM_HASH)
        with self.assertRaises(InvalidInputError):
            contract_instance_key("GABC")
        with self.assertRaises(InvalidInputError):
            contract_code_key("zz")

    async def test_wasm_hash_and_storage(self):
        with patch.object(
            SorobanRpcClient, "get_ledger_entries", return_value=self.entries[0]
        ):
            wasm_hash = await get_contract_wasm_hash(self.client, self.CONTRACT)
            storage = await get_contract_storage(self.client, self.CONTRACT)
        self.assertEqual(wasm_hash, self.WASM_HASH.hex())
        self.assertEqual(storage, {"COUNTER": 3})

    async def test_wasm_and_spec(self):
        with patch.object(
            SorobanRpcClient, "get_ledger_entries", side_effect=self.entries
        ):
            wasm = await get_contract_wasm(self.client, self.CONTRACT)
        self.assertEqual(wasm, self.wasm)

        with patch.object(
            SorobanRpcClient, "get_ledger_entries", side_effect=self.entries
        ) as lookup:
            spec = await get_contract_spec(self.client, self.CONTRACT)
        self.assertEqual(function_names(spec), ["hello", "increment"])
        self.assertEqual(lookup.call_count, 2)

    async def test_missing_contract(self):
        with patch.object(SorobanRpcClient, "get_ledger_entries", return_value=[]):
            with self.assertRaises(LedgerEntryNotFound):
                await get_contract_wasm(self.client, self.CONTRACT)
