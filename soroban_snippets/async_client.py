# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Asynchronous client for the Soroban JSON-RPC interface.

This module provides the network side of the transaction lifecycle: a thin,
typed wrapper around the JSON-RPC 2.0 methods exposed by a Soroban RPC server.
The binary payloads (envelopes, ledger keys, results, metadata) travel as
base64 XDR and are decoded with the XDR types shipped by ``stellar-sdk``.

Key Features:
- **SorobanRpcClient**: async client over ``httpx.AsyncClient``
- **ClientConfig**: fees, polling cadence and timeouts in one place
- **Typed responses**: dataclasses for the transaction, simulation, ledger
  entry and event responses, with helpers decoding their XDR members
- **Error Handling**: HTTP and JSON-RPC failures raise :class:`RpcError`

RPC Methods:
    getHealth, getNetwork, getLatestLedger: node status
    getLedgerEntries: raw ledger entries (accounts, contract data and code)
    simulateTransaction: footprint, resource fee and auth preview
    sendTransaction: submission, returns a hash immediately
    getTransaction: status query for a submitted hash
    getEvents: contract and system events over a ledger range

Examples:
    Node status and an account lookup::

        from soroban_snippets.async_client import SorobanRpcClient

        client = SorobanRpcClient("https://soroban-testnet.stellar.org")
        health = await client.get_health()
        network = await client.get_network()
        account = await client.get_account("GBHAOSNA...")
        print(health["status"], network["passphrase"], account.sequence)
        await client.close()

    Submitting a signed envelope and polling once::

        sent = await client.send_transaction(signed.to_xdr())
        status = await client.get_transaction(sent.hash)
        if status.status == GetTransactionStatus.NOT_FOUND:
            ...

Note:
    All methods are coroutines. The client keeps a pooled connection open, so
    call :meth:`SorobanRpcClient.close` when done.
"""

from __future__ import annotations

import itertools
import logging
import unittest
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx
from stellar_sdk import Keypair
from stellar_sdk import xdr as stellar_xdr

from .account import AccountSnapshot, account_ledger_key
from .errors import AccountNotFound, RpcError
from .metadata import Metadata

logger = logging.getLogger(__name__)

TIMEOUT_INFINITE = "infinite"


@dataclass
class ClientConfig:
    """Configuration shared by the lifecycle components.

    Transaction Parameters:
        base_fee: Inclusion fee per operation in stroops (default: 100)
        transaction_timeout: Seconds until the envelope expires, or
            ``"infinite"`` for no upper time bound (default: ``"infinite"``)

    Polling Parameters:
        poll_interval: Seconds between two status queries (default: 1.0)
        max_poll_attempts: Status queries before giving up, ``None`` polls
            until the endpoint answers (default: None)

    Network Parameters:
        http2: Enable HTTP/2 (default: True)
        api_key: Optional bearer token for hosted RPC providers
        request_timeout: Per request timeout in seconds (default: 30.0)

    Examples:
        Bounded waiting, recommended outside of demos::

            config = ClientConfig(transaction_timeout=300, max_poll_attempts=60)
    """

    base_fee: int = 100
    transaction_timeout: Union[int, str] = TIMEOUT_INFINITE
    poll_interval: float = 1.0
    max_poll_attempts: Optional[int] = None
    http2: bool = True
    api_key: Optional[str] = None
    request_timeout: float = 30.0


class SendTransactionStatus(str, Enum):
    PENDING = "PENDING"
    DUPLICATE = "DUPLICATE"
    TRY_AGAIN_LATER = "TRY_AGAIN_LATER"
    ERROR = "ERROR"


class GetTransactionStatus(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class SendTransactionResponse:
    hash: str
    status: SendTransactionStatus
    latest_ledger: int
    error_result_xdr: Optional[str] = None

    @staticmethod
    def from_json(data: Dict[str, Any]) -> SendTransactionResponse:
        return SendTransactionResponse(
            hash=data["hash"],
            status=SendTransactionStatus(data["status"]),
            latest_ledger=int(data.get("latestLedger", 0)),
            error_result_xdr=data.get("errorResultXdr"),
        )

    def error_result(self) -> Optional[stellar_xdr.TransactionResult]:
        if self.error_result_xdr is None:
            return None
        return stellar_xdr.TransactionResult.from_xdr(self.error_result_xdr)


@dataclass
class GetTransactionResponse:
    status: GetTransactionStatus
    latest_ledger: int
    ledger: Optional[int] = None
    created_at: Optional[int] = None
    application_order: Optional[int] = None
    envelope_xdr: Optional[str] = None
    result_xdr: Optional[str] = None
    result_meta_xdr: Optional[str] = None

    @staticmethod
    def from_json(data: Dict[str, Any]) -> GetTransactionResponse:
        def optional_int(key: str) -> Optional[int]:
            return int(data[key]) if data.get(key) is not None else None

        return GetTransactionResponse(
            status=GetTransactionStatus(data["status"]),
            latest_ledger=int(data.get("latestLedger", 0)),
            ledger=optional_int("ledger"),
            created_at=optional_int("createdAt"),
            application_order=optional_int("applicationOrder"),
            envelope_xdr=data.get("envelopeXdr"),
            result_xdr=data.get("resultXdr"),
            result_meta_xdr=data.get("resultMetaXdr"),
        )

    def result(self) -> Optional[stellar_xdr.TransactionResult]:
        if self.result_xdr is None:
            return None
        return stellar_xdr.TransactionResult.from_xdr(self.result_xdr)


@dataclass
class SimulateTransactionResponse:
    latest_ledger: int
    transaction_data: Optional[str] = None
    min_resource_fee: int = 0
    auth: List[str] = field(default_factory=list)
    return_value_xdr: Optional[str] = None
    error: Optional[str] = None

    @staticmethod
    def from_json(data: Dict[str, Any]) -> SimulateTransactionResponse:
        results = data.get("results") or []
        first = results[0] if results else {}
        return SimulateTransactionResponse(
            latest_ledger=int(data.get("latestLedger", 0)),
            transaction_data=data.get("transactionData"),
            min_resource_fee=int(data.get("minResourceFee", 0)),
            auth=list(first.get("auth") or []),
            return_value_xdr=first.get("xdr"),
            error=data.get("error"),
        )

    def soroban_data(self) -> Optional[stellar_xdr.SorobanTransactionData]:
        if not self.transaction_data:
            return None
        return stellar_xdr.SorobanTransactionData.from_xdr(self.transaction_data)

    def auth_entries(self) -> List[stellar_xdr.SorobanAuthorizationEntry]:
        return [stellar_xdr.SorobanAuthorizationEntry.from_xdr(x) for x in self.auth]


@dataclass
class LedgerEntryResult:
    key: str
    xdr: str
    last_modified_ledger: int
    live_until_ledger: Optional[int] = None

    @staticmethod
    def from_json(data: Dict[str, Any]) -> LedgerEntryResult:
        live_until = data.get("liveUntilLedgerSeq")
        return LedgerEntryResult(
            key=data["key"],
            xdr=data["xdr"],
            last_modified_ledger=int(data.get("lastModifiedLedgerSeq", 0)),
            live_until_ledger=int(live_until) if live_until is not None else None,
        )

    def data(self) -> stellar_xdr.LedgerEntryData:
        return stellar_xdr.LedgerEntryData.from_xdr(self.xdr)


@dataclass
class EventInfo:
    id: str
    type: str
    ledger: int
    ledger_closed_at: str
    contract_id: Optional[str]
    topics: List[str]
    value: str

    @staticmethod
    def from_json(data: Dict[str, Any]) -> EventInfo:
        value = data["value"]
        # Older servers wrap the value as {"xdr": ...}
        if isinstance(value, dict):
            value = value["xdr"]
        return EventInfo(
            id=data["id"],
            type=data["type"],
            ledger=int(data["ledger"]),
            ledger_closed_at=data.get("ledgerClosedAt", ""),
            contract_id=data.get("contractId") or None,
            topics=list(data.get("topic") or []),
            value=value,
        )

    def topic_values(self) -> List[stellar_xdr.SCVal]:
        return [stellar_xdr.SCVal.from_xdr(topic) for topic in self.topics]

    def value_scval(self) -> stellar_xdr.SCVal:
        return stellar_xdr.SCVal.from_xdr(self.value)


class SorobanRpcClient:
    """Async client for a Soroban RPC server.

    Attributes:
        base_url: JSON-RPC endpoint URL
        client: Underlying pooled HTTP client
        client_config: Fee, timeout and polling configuration

    Examples:
        Basic setup::

            client = SorobanRpcClient("https://soroban-testnet.stellar.org")
            latest = await client.get_latest_ledger()
            print(latest["sequence"])
            await client.close()
    """

    base_url: str
    client: httpx.AsyncClient
    client_config: ClientConfig

    def __init__(self, base_url: str, client_config: ClientConfig = ClientConfig()):
        self.base_url = base_url
        limits = httpx.Limits()
        timeout = httpx.Timeout(client_config.request_timeout, pool=None)
        headers = Metadata.headers()
        self.client = httpx.AsyncClient(
            http2=client_config.http2,
            limits=limits,
            timeout=timeout,
            headers=headers,
        )
        self.client_config = client_config
        self._request_ids = itertools.count(1)
        if client_config.api_key:
            self.client.headers["Authorization"] = f"Bearer {client_config.api_key}"

    async def close(self):
        """Close the underlying HTTP connection pool."""
        await self.client.aclose()

    #
    # Node status
    #

    async def get_health(self) -> Dict[str, Any]:
        """Return the node health report, e.g. ``{"status": "healthy", ...}``."""
        return await self._rpc("getHealth")

    async def get_network(self) -> Dict[str, Any]:
        """Return the network passphrase, protocol version and friendbot URL."""
        return await self._rpc("getNetwork")

    async def get_latest_ledger(self) -> Dict[str, Any]:
        """Return the id, protocol version and sequence of the latest ledger."""
        return await self._rpc("getLatestLedger")

    #
    # Ledger state
    #

    async def get_ledger_entries(
        self, keys: Sequence[stellar_xdr.LedgerKey]
    ) -> List[LedgerEntryResult]:
        """
        Fetch raw ledger entries by key.

        Entries that do not exist (or have been archived) are simply missing
        from the result, so the list can be shorter than ``keys``.

        :param keys: Ledger keys to look up
        :return: The entries found, in the server's order
        """
        result = await self._rpc(
            "getLedgerEntries", {"keys": [key.to_xdr() for key in keys]}
        )
        return [LedgerEntryResult.from_json(x) for x in result.get("entries") or []]

    async def get_account(self, account_id: str) -> AccountSnapshot:
        """
        Fetch the current sequence number of an account.

        :param account_id: Account public key (``G...``)
        :return: A read-only snapshot of the account
        :raises AccountNotFound: If the account does not exist
        """
        entries = await self.get_ledger_entries([account_ledger_key(account_id)])
        if not entries:
            raise AccountNotFound(account_id)
        account_entry = entries[0].data().account
        return AccountSnapshot(
            account_id, account_entry.seq_num.sequence_number.int64
        )

    #
    # Transactions
    #

    async def simulate_transaction(
        self, envelope_xdr: str
    ) -> SimulateTransactionResponse:
        """Simulate an unsigned envelope to learn its footprint, fee and auth."""
        result = await self._rpc("simulateTransaction", {"transaction": envelope_xdr})
        return SimulateTransactionResponse.from_json(result)

    async def send_transaction(self, envelope_xdr: str) -> SendTransactionResponse:
        """
        Submit a signed envelope.

        The server answers immediately with the transaction hash; the outcome
        has to be polled with :meth:`get_transaction`.
        """
        result = await self._rpc("sendTransaction", {"transaction": envelope_xdr})
        return SendTransactionResponse.from_json(result)

    async def get_transaction(self, tx_hash: str) -> GetTransactionResponse:
        """Query the status of a submitted transaction by hash."""
        result = await self._rpc("getTransaction", {"hash": tx_hash})
        return GetTransactionResponse.from_json(result)

    #
    # Events
    #

    async def get_events(
        self,
        start_ledger: Optional[int] = None,
        filters: Optional[List[Dict[str, Any]]] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> List[EventInfo]:
        """
        Retrieve events emitted from ``start_ledger`` onwards.

        :param start_ledger: First ledger to scan, ignored when ``cursor`` is set
        :param filters: Event filters, e.g. ``[{"type": "contract", "contractIds": [...]}]``
        :param limit: Maximum number of events to return
        :param cursor: Paging cursor from a previous response
        """
        params: Dict[str, Any] = {"filters": filters or []}
        pagination: Dict[str, Any] = {}
        if cursor is not None:
            pagination["cursor"] = cursor
        elif start_ledger is not None:
            params["startLedger"] = start_ledger
        if limit is not None:
            pagination["limit"] = limit
        if pagination:
            params["pagination"] = pagination
        result = await self._rpc("getEvents", params)
        return [EventInfo.from_json(x) for x in result.get("events") or []]

    async def _rpc(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        request: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
        }
        if params is not None:
            request["params"] = params
        logger.debug("rpc %s -> %s", method, self.base_url)
        response = await self.client.post(self.base_url, json=request)
        if response.status_code >= 400:
            raise RpcError(f"{method}: {response.text}", response.status_code)
        body = response.json()
        if body.get("error") is not None:
            error = body["error"]
            raise RpcError(
                f"{method}: {error.get('message', error)}", int(error.get("code", -1))
            )
        return body["result"]


class Test(unittest.IsolatedAsyncioTestCase):
    def client_with(self, handler) -> SorobanRpcClient:
        client = SorobanRpcClient("https://rpc.test", ClientConfig(http2=False))
        client.client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return client

    async def test_jsonrpc_envelope(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200, json={"jsonrpc": "2.0", "id": 1, "result": {"status": "healthy"}}
            )

        client = self.client_with(handler)
        self.assertEqual(await client.get_health(), {"status": "healthy"})
        body = httpx.Response(200, content=requests[0].content).json()
        self.assertEqual(body["jsonrpc"], "2.0")
        self.assertEqual(body["method"], "getHealth")
        self.assertNotIn("params", body)
        await client.close()

    async def test_jsonrpc_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": 1,
                    "error": {"code": -32602, "message": "invalid hash"},
                },
            )

        client = self.client_with(handler)
        with self.assertRaises(RpcError) as cm:
            await client.get_transaction("00")
        self.assertEqual(cm.exception.status_code, -32602)
        await client.close()

    async def test_http_error(self):
        client = self.client_with(lambda request: httpx.Response(503, text="busy"))
        with self.assertRaises(RpcError) as cm:
            await client.get_latest_ledger()
        self.assertEqual(cm.exception.status_code, 503)
        await client.close()

    async def test_get_account_not_found(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": 1, "result": {"latestLedger": 10}},
            )

        client = self.client_with(handler)
        with self.assertRaises(AccountNotFound):
            await client.get_account(Keypair.random().public_key)
        await client.close()

    async def test_send_transaction_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": 1,
                    "result": {
                        "hash": "ab" * 32,
                        "status": "PENDING",
                        "latestLedger": 1234,
                    },
                },
            )

        client = self.client_with(handler)
        response = await client.send_transaction("AAAA")
        self.assertEqual(response.hash, "ab" * 32)
        self.assertEqual(response.status, SendTransactionStatus.PENDING)
        self.assertIsNone(response.error_result())
        await client.close()

    async def test_get_events(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": 1,
                    "result": {
                        "latestLedger": 200,
                        "events": [
                            {
                                "type": "contract",
                                "ledger": 150,
                                "ledgerClosedAt": "2026-01-01T00:00:00Z",
                                "contractId": "CDLZFC3SYJYDZT7K67VZ75HPJVIEUVNIXF47ZG2FB2RMQQVU2HHGCYSC",
                                "id": "0000000644245508096-0000000001",
                                "topic": [],
                                "value": {"xdr": "AAAAAQ=="},
                            }
                        ],
                    },
                },
            )

        client = self.client_with(handler)
        events = await client.get_events(start_ledger=100, limit=5)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].ledger, 150)
        self.assertEqual(events[0].value, "AAAAAQ==")
        self.assertEqual(events[0].value_scval().type, stellar_xdr.SCValType.SCV_VOID)
        await client.close()
