# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Asynchronous clients for the services an abstract-account signer talks to.

Key Features:
- **RestClient**: Cosmos LCD gateway of a XION node (accounts, chain id,
  simulation, broadcast)
- **IndexerClient**: GraphQL client for the smart-account indexer, used to map a
  wallet key to the authenticator ids it holds on an abstract account
- **AAApiClient**: the remote account API that prepares and creates abstract
  accounts for wallets and looks up JWT accounts
- **Gas helpers**: fee calculation from simulated gas

Client Types:
    RestClient: chain reads, simulation and broadcast over HTTP
    IndexerClient: an explicitly constructed handle whose lifetime the caller
        owns; pass it to the signers that need it
    AAApiClient: account creation through the hosted account API

Examples:
    Reading an account::

        from xion_sdk.async_client import TESTNET, RestClient

        client = RestClient(TESTNET.rest_url)
        account = await client.account("xion1...")
        if account is None:
            print("not on chain yet")
        await client.close()

    Resolving authenticators::

        indexer = IndexerClient(TESTNET.indexer_url)
        accounts = await indexer.aa_accounts(
            wallet_address, wallet_pubkey, "secp256k1", abstract_account
        )

    Fees from simulation::

        gas_used = await client.simulate(tx)
        fee = get_gas_calculation(gas_used, TESTNET)

Error Handling:
    Every non-success HTTP status raises
    :class:`~xion_sdk.errors.ExternalServiceError` carrying the status code and
    the response body. A missing chain account is not an error:
    :meth:`RestClient.account` returns ``None``.

Note:
    All client operations are async and must be awaited. The clients use httpx
    for HTTP/2 support and connection pooling.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import math
import os
import unittest
import unittest.mock
import urllib.parse
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import python_graphql_client

from .aa_signer import AAAlgo, AAccountData
from .authenticator import AuthenticatorKind
from .errors import ExternalServiceError, InputValidationError, ProtocolStateError
from .metadata import Metadata
from .prepare import PrepareResult
from .signature import (
    format_eth_signature,
    format_secp256k1_signature,
    utf8_to_hex_with_prefix,
)
from .transactions import DEFAULT_FEE_DENOM, StdFee, TxRaw, coins

DEFAULT_INDEXER_URL = "https://api.subquery.network/sq/burnt-labs/xion-indexer"
DEFAULT_GAS_ADJUSTMENT = 1.3
DEFAULT_GAS_ADJUSTMENT_MARGIN = 100_000
BROADCAST_MODE_SYNC = "BROADCAST_MODE_SYNC"

REST_URL_ENV = "XION_REST_URL"
INDEXER_URL_ENV = "XION_INDEXER_URL"
AA_API_URL_ENV = "XION_AA_API_URL"


@dataclass(frozen=True)
class GasPriceStep:
    low: float = 0.01
    average: float = 0.025
    high: float = 0.03


@dataclass(frozen=True)
class ChainInfo:
    """Static description of a XION network.

    Attributes:
        chain_id: The chain id, e.g. ``"xion-testnet-1"``.
        rest_url: Base URL of the LCD REST gateway.
        address_prefix: Bech32 prefix of account addresses.
        fee_denom: Denomination fees are paid in.
        gas_price_step: Gas prices per unit of gas in ``fee_denom``.
        indexer_url: GraphQL endpoint of the smart-account indexer.
        aa_api_url: Base URL of the hosted account API, if the network has one.
    """

    chain_id: str
    rest_url: str
    address_prefix: str = "xion"
    fee_denom: str = DEFAULT_FEE_DENOM
    gas_price_step: GasPriceStep = field(default_factory=GasPriceStep)
    indexer_url: str = DEFAULT_INDEXER_URL
    aa_api_url: Optional[str] = None

    @property
    def gas_price(self) -> float:
        return self.gas_price_step.low

    def with_env(self) -> ChainInfo:
        """A copy with URLs overridden by ``XION_REST_URL``, ``XION_INDEXER_URL``
        and ``XION_AA_API_URL`` when they are set."""
        return ChainInfo(
            chain_id=self.chain_id,
            rest_url=os.getenv(REST_URL_ENV, self.rest_url),
            address_prefix=self.address_prefix,
            fee_denom=self.fee_denom,
            gas_price_step=self.gas_price_step,
            indexer_url=os.getenv(INDEXER_URL_ENV, self.indexer_url),
            aa_api_url=os.getenv(AA_API_URL_ENV, self.aa_api_url),
        )


TESTNET = ChainInfo(
    chain_id="xion-testnet-1",
    rest_url="https://api.xion-testnet-1.burnt.com",
)
LOCAL = ChainInfo(
    chain_id="xion-local-testnet-1",
    rest_url="http://localhost:1317",
)


@dataclass
class ClientConfig:
    """Configuration shared by the REST client and the signing client.

    Fee Parameters:
        gas_price: Price per unit of gas used for simulated default fees.
        gas_denom: Denomination of ``gas_price``.
        gas_adjustment: Multiplier applied to simulated gas.
        gas_adjustment_margin: Gas added after the multiplier.

    Network Parameters:
        broadcast_mode: Mode passed to the broadcast endpoint.
        transaction_wait_in_seconds: How long :meth:`RestClient.wait_for_transaction`
            polls before giving up.
        http2: Enable HTTP/2.
        api_key: Optional API key sent as a bearer token.

    Examples:
        Default configuration::

            client = RestClient(TESTNET.rest_url, ClientConfig())

        Generous gas for contract-heavy transactions::

            config = ClientConfig(gas_adjustment=1.6, gas_adjustment_margin=200_000)
    """

    gas_price: float = 0.001
    gas_denom: str = DEFAULT_FEE_DENOM
    gas_adjustment: float = DEFAULT_GAS_ADJUSTMENT
    gas_adjustment_margin: int = DEFAULT_GAS_ADJUSTMENT_MARGIN
    broadcast_mode: str = BROADCAST_MODE_SYNC
    transaction_wait_in_seconds: int = 20
    http2: bool = True
    api_key: Optional[str] = None


def make_http_client(client_config: ClientConfig) -> httpx.AsyncClient:
    # Default limits
    limits = httpx.Limits()
    # Default timeouts but do not set a pool timeout, since the idea is that jobs will wait as
    # long as progress is being made.
    timeout = httpx.Timeout(60.0, pool=None)
    # Default headers
    headers = {Metadata.XION_HEADER: Metadata.get_xion_header_val()}
    client = httpx.AsyncClient(
        http2=client_config.http2,
        limits=limits,
        timeout=timeout,
        headers=headers,
    )
    if client_config.api_key:
        client.headers["Authorization"] = f"Bearer {client_config.api_key}"
    return client


def calculate_fee(gas_limit: int, gas_price: float, denom: str) -> StdFee:
    """A fee of ``ceil(gas_limit * gas_price)`` for ``gas_limit`` gas."""
    amount = (Decimal(str(gas_price)) * gas_limit).to_integral_value(
        rounding=ROUND_CEILING
    )
    return StdFee(amount=coins(int(amount), denom), gas=str(gas_limit))


def get_gas_calculation(
    simulated_gas: int,
    chain_info: ChainInfo,
    gas_adjustment: Optional[float] = None,
    gas_adjustment_margin: Optional[int] = None,
) -> StdFee:
    """Fee for a transaction whose simulation used ``simulated_gas``.

    The gas limit is ``ceil(simulated_gas * gas_adjustment + gas_adjustment_margin)``,
    priced at the chain's low gas price step.
    """
    if gas_adjustment is None:
        gas_adjustment = DEFAULT_GAS_ADJUSTMENT
    if gas_adjustment_margin is None:
        gas_adjustment_margin = DEFAULT_GAS_ADJUSTMENT_MARGIN
    adjusted_gas = math.ceil(simulated_gas * gas_adjustment + gas_adjustment_margin)
    return calculate_fee(adjusted_gas, chain_info.gas_price, chain_info.fee_denom)


@dataclass(frozen=True)
class ChainAccount:
    """An account as the chain's auth module reports it.

    ``pubkey`` is ``None`` for abstract accounts, and for key-owned accounts
    that have not yet sent a transaction.
    """

    address: str
    pubkey: Optional[bytes]
    account_number: int
    sequence: int
    type_url: str = ""

    @staticmethod
    def from_json(data: Dict[str, Any]) -> ChainAccount:
        type_url = data.get("@type", "")
        # Vesting and module accounts nest the base account.
        while "base_account" in data or "base_vesting_account" in data:
            data = data.get("base_vesting_account", data).get("base_account", data)
        pub_key = data.get("pub_key")
        pubkey = None
        if pub_key and pub_key.get("key"):
            pubkey = base64.b64decode(pub_key["key"])
        return ChainAccount(
            address=data["address"],
            pubkey=pubkey,
            account_number=int(data.get("account_number", 0)),
            sequence=int(data.get("sequence", 0)),
            type_url=type_url,
        )


class RestClient:
    """Async client for the Cosmos LCD REST gateway of a XION node."""

    _chain_id: Optional[str]
    client: httpx.AsyncClient
    client_config: ClientConfig
    base_url: str

    def __init__(self, base_url: str, client_config: ClientConfig = ClientConfig()):
        self.base_url = base_url.rstrip("/")
        self.client = make_http_client(client_config)
        self.client_config = client_config
        self._chain_id = None

    async def close(self):
        await self.client.aclose()

    async def chain_id(self) -> str:
        """
        Get the chain id of the network.

        This is a coroutine that fetches and caches the network name from the node.

        :return: The chain id, e.g. ``"xion-testnet-1"``
        :raises ExternalServiceError: If the node info request fails
        """
        if not self._chain_id:
            info = await self.node_info()
            self._chain_id = info["default_node_info"]["network"]
        return self._chain_id

    async def node_info(self) -> Dict[str, Any]:
        response = await self._get(endpoint="cosmos/base/tendermint/v1beta1/node_info")
        if response.status_code >= 400:
            raise ExternalServiceError(response.text, response.status_code)
        return response.json()

    async def account(self, address: str) -> Optional[ChainAccount]:
        """
        Fetch the account number, sequence and public key of an address.

        :param address: Bech32 address of the account.
        :return: The account, or ``None`` if the chain does not know it.
        :raises ExternalServiceError: On any other failure
        """
        response = await self._get(endpoint=f"cosmos/auth/v1beta1/accounts/{address}")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ExternalServiceError(f"{response.text} - {address}", response.status_code)
        return ChainAccount.from_json(response.json()["account"])

    async def simulate(self, tx: TxRaw) -> int:
        """
        Simulate a transaction and return the gas it used.

        :param tx: The transaction; its signatures need not be valid.
        :raises ExternalServiceError: If the simulation fails
        """
        response = await self._post(
            endpoint="cosmos/tx/v1beta1/simulate",
            data={"tx_bytes": base64.b64encode(tx.to_bytes()).decode()},
        )
        if response.status_code >= 400:
            raise ExternalServiceError(response.text, response.status_code)
        return int(response.json()["gas_info"]["gas_used"])

    async def broadcast_tx(self, tx: TxRaw) -> Dict[str, Any]:
        """
        Submit a signed transaction.

        :return: The ``tx_response`` of the broadcast, including ``txhash``
        :raises ExternalServiceError: If the gateway rejects the request or the
            transaction fails its checks
        """
        response = await self._post(
            endpoint="cosmos/tx/v1beta1/txs",
            data={
                "tx_bytes": base64.b64encode(tx.to_bytes()).decode(),
                "mode": self.client_config.broadcast_mode,
            },
        )
        if response.status_code >= 400:
            raise ExternalServiceError(response.text, response.status_code)
        tx_response = response.json()["tx_response"]
        if int(tx_response.get("code", 0)) != 0:
            raise ExternalServiceError(
                f"Broadcasting transaction failed with code {tx_response['code']}: "
                f"{tx_response.get('raw_log', '')}",
                response.status_code,
            )
        logging.info("broadcast transaction %s", tx_response.get("txhash"))
        return tx_response

    async def transaction_pending(self, tx_hash: str) -> bool:
        response = await self._get(endpoint=f"cosmos/tx/v1beta1/txs/{tx_hash}")
        if response.status_code == 404:
            return True
        if response.status_code >= 400:
            raise ExternalServiceError(response.text, response.status_code)
        return False

    async def wait_for_transaction(self, tx_hash: str) -> Dict[str, Any]:
        """
        Waits up to the duration specified in client_config for a transaction to
        be included in a block, and returns its ``tx_response``.
        """

        count = 0
        while await self.transaction_pending(tx_hash):
            if count >= self.client_config.transaction_wait_in_seconds:
                raise ExternalServiceError(f"transaction {tx_hash} timed out")
            await asyncio.sleep(1)
            count += 1

        response = await self._get(endpoint=f"cosmos/tx/v1beta1/txs/{tx_hash}")
        tx_response = response.json()["tx_response"]
        if int(tx_response.get("code", 0)) != 0:
            raise ExternalServiceError(
                f"{tx_response.get('raw_log', '')} - {tx_hash}", response.status_code
            )
        return tx_response

    async def _post(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        # format params:
        params = {} if params is None else params
        params = {key: val for key, val in params.items() if val is not None}
        return await self.client.post(
            url=f"{self.base_url}/{endpoint}",
            params=params,
            json=data,
        )

    async def _get(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        # format params:
        params = {} if params is None else params
        params = {key: val for key, val in params.items() if val is not None}
        return await self.client.get(
            url=f"{self.base_url}/{endpoint}",
            params=params,
        )


SMART_ACCOUNT_FRAGMENT = """
fragment SmartAccountFragment on SmartAccountAuthenticator {
  id
  type
  authenticator
  authenticatorIndex
  version
}
"""

SMART_ACCOUNTS_BY_ID_TYPE_AND_AUTHENTICATOR_QUERY = (
    SMART_ACCOUNT_FRAGMENT
    + """
query ($id: String!, $type: String!, $authenticator: String!) {
  smartAccounts(
    filter: {
      id: { equalTo: $id }
      authenticators: {
        some: {
          authenticator: { equalTo: $authenticator }
          type: { equalTo: $type }
        }
      }
    }
  ) {
    nodes {
      authenticators {
        nodes {
          ...SmartAccountFragment
        }
      }
    }
  }
}
"""
)

SMART_ACCOUNTS_BY_ID_AND_AUTHENTICATOR_QUERY = (
    SMART_ACCOUNT_FRAGMENT
    + """
query ($id: String!, $authenticator: String!) {
  smartAccounts(
    filter: {
      id: { equalTo: $id }
      authenticators: { some: { authenticator: { equalTo: $authenticator } } }
    }
  ) {
    nodes {
      authenticators {
        nodes {
          ...SmartAccountFragment
        }
      }
    }
  }
}
"""
)

SMART_ACCOUNTS_BY_AUTHENTICATOR_QUERY = (
    SMART_ACCOUNT_FRAGMENT
    + """
query ($authenticator: String!) {
  smartAccounts(
    filter: {
      authenticators: { some: { authenticator: { equalTo: $authenticator } } }
    }
  ) {
    nodes {
      id
      authenticators {
        nodes {
          ...SmartAccountFragment
        }
      }
    }
  }
}
"""
)

SINGLE_SMART_ACCOUNT_QUERY = (
    SMART_ACCOUNT_FRAGMENT
    + """
query ($id: String!) {
  smartAccount(id: $id) {
    id
    latestAuthenticatorId
    authenticators {
      nodes {
        ...SmartAccountFragment
      }
    }
  }
}
"""
)


SMART_ACCOUNT_BY_AUTHENTICATOR_INDEX_QUERY = (
    SMART_ACCOUNT_FRAGMENT
    + """
query ($id: String!, $index: Int!) {
  smartAccounts(filter: { id: { equalTo: $id } }) {
    nodes {
      authenticators(filter: { authenticatorIndex: { equalTo: $index } }) {
        nodes {
          ...SmartAccountFragment
        }
      }
    }
  }
}
"""
)


class IndexerClient:
    """GraphQL client for the smart-account indexer.

    The indexer records every abstract account with its authenticators. Each
    authenticator node has an ``id`` of the form ``"<account>-<authenticator id>"``,
    a ``type`` such as ``"Secp256K1"`` and the ``authenticator`` material (a
    base64 public key, an Ethereum address, or ``"aud.sub"``).

    The client is an ordinary object: construct one and pass it to the signers
    that need it. Nothing is cached between queries.
    """

    client: python_graphql_client.GraphqlClient

    def __init__(self, indexer_url: str = DEFAULT_INDEXER_URL, bearer_token: Optional[str] = None):
        headers = {}
        if bearer_token:
            headers["Authorization"] = f"Bearer {bearer_token}"
        self.client = python_graphql_client.GraphqlClient(
            endpoint=indexer_url, headers=headers
        )

    async def query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """Execute a GraphQL query and return its ``data``.

        Raises:
            ExternalServiceError: If the response carries GraphQL errors or no data.
        """
        result = await self.client.execute_async(query, variables)
        if result.get("errors"):
            raise ExternalServiceError(f"Indexer query failed: {result['errors']}")
        if result.get("data") is None:
            raise ExternalServiceError("Indexer returned no data")
        return result["data"]

    async def authenticators(
        self, abstract_account: str, authenticator_type: str, authenticator: str
    ) -> List[Dict[str, Any]]:
        """Authenticator nodes of ``abstract_account`` matching a type and material."""
        data = await self.query(
            SMART_ACCOUNTS_BY_ID_TYPE_AND_AUTHENTICATOR_QUERY,
            {
                "id": abstract_account,
                "type": authenticator_type,
                "authenticator": authenticator,
            },
        )
        nodes = []
        for account in data["smartAccounts"]["nodes"]:
            nodes.extend(account["authenticators"]["nodes"])
        return nodes

    async def aa_accounts(
        self,
        wallet_address: str,
        wallet_pubkey: bytes,
        algo: str,
        abstract_account: str,
    ) -> List[AAccountData]:
        """The authenticators of ``abstract_account`` held by one wallet key.

        Args:
            wallet_address: The wallet's own address, recorded as the signing
                account of every entry.
            wallet_pubkey: The wallet's raw public key.
            algo: The wallet's algorithm, e.g. ``"secp256k1"``.
            abstract_account: The abstract account to search.
        """
        authenticator_type = AAAlgo(algo.lower()).to_kind().value
        nodes = await self.authenticators(
            abstract_account,
            authenticator_type,
            base64.b64encode(wallet_pubkey).decode(),
        )
        accounts = []
        for node in nodes:
            account_id, _, authenticator_id = node["id"].rpartition("-")
            node_algo = node["type"].lower()
            accounts.append(
                AAccountData(
                    address=account_id,
                    account_address=wallet_address,
                    authenticator_id=int(authenticator_id),
                    algo=node_algo,
                    aaalgo=AAAlgo.parse(node_algo),
                )
            )
        if len(accounts) > 1:
            logging.warning(
                "indexer returned %d authenticators of %s for one key",
                len(accounts),
                abstract_account,
            )
        return accounts

    async def authenticator_id_by_authenticator(
        self, abstract_account: str, authenticator: str
    ) -> Optional[int]:
        """The id under which ``authenticator`` is registered on the account, if it is."""
        data = await self.query(
            SMART_ACCOUNTS_BY_ID_AND_AUTHENTICATOR_QUERY,
            {"id": abstract_account, "authenticator": authenticator},
        )
        for account in data["smartAccounts"]["nodes"]:
            for node in account["authenticators"]["nodes"]:
                if node["authenticator"] == authenticator:
                    return int(node["id"].rpartition("-")[2])
        return None

    async def smart_accounts(self, authenticator: str) -> List[str]:
        """Addresses of every abstract account that has ``authenticator`` registered."""
        data = await self.query(
            SMART_ACCOUNTS_BY_AUTHENTICATOR_QUERY, {"authenticator": authenticator}
        )
        return [node["id"] for node in data["smartAccounts"]["nodes"]]

    async def authenticator_id_by_index(
        self, abstract_account: str, authenticator_index: int
    ) -> int:
        """The authenticator id stored at ``authenticator_index``.

        :raises ProtocolStateError: If the indexer knows no authenticator there.
        """
        data = await self.query(
            SMART_ACCOUNT_BY_AUTHENTICATOR_INDEX_QUERY,
            {"id": abstract_account, "index": authenticator_index},
        )
        accounts = data.get("smartAccounts", {}).get("nodes", [])
        if not accounts or not accounts[0]["authenticators"]["nodes"]:
            raise ProtocolStateError(
                f"No authenticator at index {authenticator_index} of {abstract_account}"
            )
        nodes = accounts[0]["authenticators"]["nodes"]
        if len(accounts) > 1 or len(nodes) > 1:
            logging.warning(
                "indexer returned several authenticators at index %d of %s",
                authenticator_index,
                abstract_account,
            )
        return int(nodes[0].get("authenticatorIndex") or 0)

    async def latest_authenticator_id(self, abstract_account: str) -> int:
        """The highest authenticator id used on the account.

        :raises ProtocolStateError: If the indexer does not know the account.
        """
        data = await self.query(SINGLE_SMART_ACCOUNT_QUERY, {"id": abstract_account})
        smart_account = data.get("smartAccount")
        if not smart_account:
            raise ProtocolStateError(f"Account {abstract_account} not found on indexer")
        return int(smart_account.get("latestAuthenticatorId") or 0)


@dataclass(frozen=True)
class CreateAccountResponse:
    account_address: str
    code_id: int
    transaction_hash: str

    @staticmethod
    def from_json(data: Dict[str, Any]) -> CreateAccountResponse:
        return CreateAccountResponse(
            account_address=data["account_address"],
            code_id=int(data["code_id"]),
            transaction_hash=data["transaction_hash"],
        )


@dataclass(frozen=True)
class AddressResponse:
    address: str
    authenticator_type: Optional[str] = None


@dataclass(frozen=True)
class CheckResponse:
    address: str
    code_id: int
    authenticator_type: str


# (hex message with 0x) -> signature
SignMessageFn = Callable[[str], Awaitable[str]]


def _account_type(kind: AuthenticatorKind) -> str:
    if kind not in (
        AuthenticatorKind.ETH_WALLET,
        AuthenticatorKind.SECP256K1,
        AuthenticatorKind.JWT,
    ):
        raise InputValidationError(f"Account API does not support {kind.value}")
    return kind.value.lower()


class AAApiClient:
    """Client for the hosted account API.

    The v1 wallet endpoints run the prepare and create steps of account
    creation for Ethereum and Cosmos wallets; the v1 JWT endpoint looks up the
    accounts of a JWT identity. The v2 endpoints take a lowercase account type
    (``ethwallet``, ``secp256k1`` or ``jwt``) in the path.
    """

    PREPARE_ENDPOINT = "api/v1/wallet-accounts/prepare"
    CREATE_ENDPOINT = "api/v1/wallet-accounts/create"
    JWT_ACCOUNTS_ENDPOINT = "api/v1/jwt-accounts"
    ADDRESS_ENDPOINT = "api/v2/account/address"
    CHECK_ENDPOINT = "api/v2/account/check"
    CREATE_V2_ENDPOINT = "api/v2/accounts/create"

    client: httpx.AsyncClient
    base_url: str

    def __init__(self, base_url: str, client_config: ClientConfig = ClientConfig()):
        self.base_url = base_url.rstrip("/")
        self.client = make_http_client(client_config)

    async def close(self):
        await self.client.aclose()

    async def prepare(
        self, wallet_type: AuthenticatorKind, credential: str
    ) -> PrepareResult:
        """Ask the API for the message a wallet must sign to create its account.

        ``credential`` is the Ethereum address for ``ETH_WALLET`` and the hex
        public key for ``SECP256K1``.
        """
        response = await self._post(
            self.PREPARE_ENDPOINT,
            {"wallet_type": wallet_type.value, **_credential_field(wallet_type, credential)},
            "/prepare",
        )
        return PrepareResult(
            message_to_sign=response["message_to_sign"],
            predicted_address=response.get("predicted_address", ""),
            salt=response["salt"],
            metadata=response.get("metadata", {}),
        )

    async def create(
        self,
        wallet_type: AuthenticatorKind,
        credential: str,
        signature: str,
        prepared: PrepareResult,
    ) -> CreateAccountResponse:
        """Submit the signed prepare message and create the account on chain."""
        response = await self._post(
            self.CREATE_ENDPOINT,
            {
                "wallet_type": wallet_type.value,
                **_credential_field(wallet_type, credential),
                "signature": signature,
                "salt": prepared.salt,
                "message": json.dumps(prepared.metadata, separators=(",", ":")),
            },
            "/create",
        )
        return CreateAccountResponse.from_json(response)

    async def create_eth_wallet_account(
        self, address: str, sign_message: SignMessageFn
    ) -> CreateAccountResponse:
        """Prepare, sign with ``personal_sign`` and create an Ethereum wallet account.

        ``sign_message`` receives the message as ``0x`` hex of its UTF-8 bytes and
        returns the 65-byte signature as hex.
        """
        logging.info("creating account for Ethereum address %s", address)
        prepared = await self.prepare(AuthenticatorKind.ETH_WALLET, address)
        signature = await sign_message(utf8_to_hex_with_prefix(prepared.message_to_sign))
        result = await self.create(
            AuthenticatorKind.ETH_WALLET,
            address,
            format_eth_signature(signature)[2:],
            prepared,
        )
        logging.info("created account %s", result.account_address)
        return result

    async def create_secp256k1_account(
        self, pubkey_hex: str, sign_message: SignMessageFn
    ) -> CreateAccountResponse:
        """Prepare, sign and create a Cosmos wallet account.

        ``sign_message`` receives the plain message and returns the 64-byte
        signature as base64 (or hex).
        """
        logging.info("creating account for secp256k1 key %s", pubkey_hex)
        prepared = await self.prepare(AuthenticatorKind.SECP256K1, pubkey_hex)
        signature = await sign_message(prepared.message_to_sign)
        result = await self.create(
            AuthenticatorKind.SECP256K1,
            pubkey_hex,
            format_secp256k1_signature(signature),
            prepared,
        )
        logging.info("created account %s", result.account_address)
        return result

    async def jwt_accounts(self, aud: str, sub: str) -> List[Dict[str, Any]]:
        """Accounts registered for the JWT identity ``aud.sub``.

        Returns an empty list when the API knows no such identity. Entries
        without a string ``id``, a numeric ``codeId`` and an ``authenticators``
        list are dropped.
        """
        response = await self.client.get(
            f"{self.base_url}/{self.JWT_ACCOUNTS_ENDPOINT}/"
            f"{urllib.parse.quote(aud, safe='')}/{urllib.parse.quote(sub, safe='')}"
        )
        if response.status_code == 404:
            return []
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Account API returned {response.status_code}: {response.text}",
                response.status_code,
            )
        data = response.json()
        accounts = data if isinstance(data, list) else [data]
        return [
            account
            for account in accounts
            if account
            and isinstance(account.get("id"), str)
            and isinstance(account.get("codeId"), int)
            and isinstance(account.get("authenticators"), list)
        ]

    async def get_address(
        self, kind: AuthenticatorKind, credential: str
    ) -> AddressResponse:
        """The address the account for ``credential`` has, or will have."""
        response = await self.client.get(
            f"{self.base_url}/{self.ADDRESS_ENDPOINT}/{_account_type(kind)}/"
            f"{urllib.parse.quote(credential, safe='')}"
        )
        data = _json_or_raise(response, "/account/address")
        return AddressResponse(data["address"], data.get("authenticator_type"))

    async def check(self, kind: AuthenticatorKind, credential: str) -> CheckResponse:
        """Whether an account exists for ``credential``, with its code id."""
        response = await self.client.get(
            f"{self.base_url}/{self.CHECK_ENDPOINT}/{_account_type(kind)}/"
            f"{urllib.parse.quote(credential, safe='')}"
        )
        data = _json_or_raise(response, "/account/check")
        return CheckResponse(
            address=data["address"],
            code_id=int(data["codeId"]),
            authenticator_type=data["authenticatorType"],
        )

    async def create_account(
        self, kind: AuthenticatorKind, request: Dict[str, str]
    ) -> CreateAccountResponse:
        """Create an account through the v2 endpoint.

        ``request`` is ``{address, signature}`` for ``ETH_WALLET``,
        ``{pubkey, signature}`` for ``SECP256K1`` and ``{jwt, auth_payload}``
        for ``JWT``.
        """
        required = _V2_CREATE_FIELDS.get(kind)
        if required is None:
            _account_type(kind)
        missing = [name for name in required or () if not request.get(name)]
        if missing:
            raise InputValidationError(
                f"Create request for {kind.value} is missing {', '.join(missing)}"
            )
        response = await self._post(
            f"{self.CREATE_V2_ENDPOINT}/{_account_type(kind)}", request, "/accounts/create"
        )
        return CreateAccountResponse.from_json(response)

    async def _post(
        self, endpoint: str, data: Dict[str, Any], name: str
    ) -> Dict[str, Any]:
        response = await self.client.post(f"{self.base_url}/{endpoint}", json=data)
        return _json_or_raise(response, name)


_V2_CREATE_FIELDS = {
    AuthenticatorKind.ETH_WALLET: ("address", "signature"),
    AuthenticatorKind.SECP256K1: ("pubkey", "signature"),
    AuthenticatorKind.JWT: ("jwt", "auth_payload"),
}


def _credential_field(kind: AuthenticatorKind, credential: str) -> Dict[str, str]:
    if kind is AuthenticatorKind.ETH_WALLET:
        return {"address": credential}
    if kind is AuthenticatorKind.SECP256K1:
        return {"pubkey": credential}
    raise InputValidationError(f"Wallet type {kind.value} cannot be created from a wallet")


def _json_or_raise(response: httpx.Response, name: str) -> Dict[str, Any]:
    if response.status_code >= 400:
        message = f"AA API {name} failed with status {response.status_code}"
        try:
            message = response.json()["error"]["message"] or message
        except (ValueError, KeyError, TypeError):
            pass
        raise ExternalServiceError(message, response.status_code)
    return response.json()


class Test(unittest.IsolatedAsyncioTestCase):
    ABSTRACT_ACCOUNT = "xion1abstract"

    def setUp(self):
        patcher = unittest.mock.patch(
            "xion_sdk.metadata.Metadata.get_xion_header_val",
            return_value="xion-python-sdk/test",
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def _patch(self, target: str, **kwargs) -> unittest.mock.MagicMock:
        patcher = unittest.mock.patch(target, **kwargs)
        mock = patcher.start()
        self.addCleanup(patcher.stop)
        return mock

    def test_gas_calculation(self):
        fee = get_gas_calculation(100_000, TESTNET)
        self.assertEqual(fee.gas, "230000")
        self.assertEqual(fee.amount[0].denom, "uxion")
        self.assertEqual(fee.amount[0].amount, "2300")

        fee = get_gas_calculation(
            1, TESTNET, gas_adjustment=1.5, gas_adjustment_margin=0
        )
        self.assertEqual(fee.gas, "2")
        self.assertEqual(fee.amount[0].amount, "1")

    def test_chain_account_from_json(self):
        abstract = ChainAccount.from_json(
            {
                "@type": "/abstractaccount.v1.AbstractAccount",
                "address": "xion1abstract",
                "pub_key": None,
                "account_number": "12",
                "sequence": "3",
            }
        )
        self.assertIsNone(abstract.pubkey)
        self.assertEqual((abstract.account_number, abstract.sequence), (12, 3))

        regular = ChainAccount.from_json(
            {
                "@type": "/cosmos.auth.v1beta1.BaseAccount",
                "address": "xion1regular",
                "pub_key": {
                    "@type": "/cosmos.crypto.secp256k1.PubKey",
                    "key": base64.b64encode(b"\x02" + bytes(32)).decode(),
                },
                "account_number": "1",
                "sequence": "0",
            }
        )
        self.assertEqual(regular.pubkey, b"\x02" + bytes(32))

        vesting = ChainAccount.from_json(
            {
                "@type": "/cosmos.vesting.v1beta1.ContinuousVestingAccount",
                "base_vesting_account": {
                    "base_account": {
                        "address": "xion1vesting",
                        "pub_key": None,
                        "account_number": "5",
                        "sequence": "9",
                    }
                },
            }
        )
        self.assertEqual(vesting.address, "xion1vesting")
        self.assertEqual(vesting.sequence, 9)

    async def test_rest_account(self):
        get = self._patch(
            "httpx.AsyncClient.get",
            return_value=httpx.Response(
                200,
                json={
                    "account": {
                        "@type": "/abstractaccount.v1.AbstractAccount",
                        "address": "xion1abstract",
                        "account_number": "4",
                        "sequence": "2",
                    }
                },
            ),
        )
        client = RestClient(TESTNET.rest_url + "/")
        account = await client.account("xion1abstract")
        assert account is not None
        self.assertEqual(account.account_number, 4)
        self.assertEqual(
            get.call_args.kwargs["url"],
            "https://api.xion-testnet-1.burnt.com/cosmos/auth/v1beta1/accounts/xion1abstract",
        )

        get.return_value = httpx.Response(404, text="not found")
        self.assertIsNone(await client.account("xion1missing"))

        get.return_value = httpx.Response(500, text="boom")
        with self.assertRaises(ExternalServiceError) as cm:
            await client.account("xion1abstract")
        self.assertEqual(cm.exception.status_code, 500)

    async def test_rest_chain_id_is_cached(self):
        get = self._patch(
            "httpx.AsyncClient.get",
            return_value=httpx.Response(
                200, json={"default_node_info": {"network": "xion-testnet-1"}}
            ),
        )
        client = RestClient(TESTNET.rest_url)
        self.assertEqual(await client.chain_id(), "xion-testnet-1")
        self.assertEqual(await client.chain_id(), "xion-testnet-1")
        self.assertEqual(get.call_count, 1)

    async def test_rest_simulate_and_broadcast(self):
        tx = TxRaw(b"body", b"auth", [b""])
        post = self._patch(
            "httpx.AsyncClient.post",
            return_value=httpx.Response(200, json={"gas_info": {"gas_used": "81234"}}),
        )
        client = RestClient(TESTNET.rest_url)
        self.assertEqual(await client.simulate(tx), 81234)
        self.assertEqual(
            post.call_args.kwargs["json"],
            {"tx_bytes": base64.b64encode(tx.to_bytes()).decode()},
        )

        post.return_value = httpx.Response(
            200, json={"tx_response": {"code": 0, "txhash": "ABCD"}}
        )
        self.assertEqual((await client.broadcast_tx(tx))["txhash"], "ABCD")
        self.assertEqual(post.call_args.kwargs["json"]["mode"], BROADCAST_MODE_SYNC)

        post.return_value = httpx.Response(
            200, json={"tx_response": {"code": 5, "raw_log": "insufficient funds"}}
        )
        with self.assertRaisesRegex(ExternalServiceError, "insufficient funds"):
            await client.broadcast_tx(tx)

    async def test_indexer_aa_accounts(self):
        execute = self._patch(
            "python_graphql_client.GraphqlClient.execute_async",
            return_value={
                "data": {
                    "smartAccounts": {
                        "nodes": [
                            {
                                "authenticators": {
                                    "nodes": [
                                        {
                                            "id": "xion1abstract-2",
                                            "type": "Secp256K1",
                                            "authenticator": "AAAA",
                                            "authenticatorIndex": 2,
                                            "version": "1",
                                        }
                                    ]
                                }
                            }
                        ]
                    }
                }
            },
        )
        indexer = IndexerClient()
        accounts = await indexer.aa_accounts(
            "xion1wallet", b"\x02" + bytes(32), "secp256k1", self.ABSTRACT_ACCOUNT
        )
        self.assertEqual(
            accounts,
            [
                AAccountData(
                    address="xion1abstract",
                    account_address="xion1wallet",
                    authenticator_id=2,
                    algo="secp256k1",
                    aaalgo=AAAlgo.SECP256K1,
                )
            ],
        )
        variables = execute.call_args.args[1]
        self.assertEqual(variables["type"], "Secp256K1")
        self.assertEqual(
            variables["authenticator"],
            base64.b64encode(b"\x02" + bytes(32)).decode(),
        )

    async def test_indexer_latest_authenticator_id_and_errors(self):
        execute = self._patch(
            "python_graphql_client.GraphqlClient.execute_async",
            return_value={"data": {"smartAccount": {"latestAuthenticatorId": 4}}},
        )
        indexer = IndexerClient()
        self.assertEqual(await indexer.latest_authenticator_id(self.ABSTRACT_ACCOUNT), 4)

        execute.return_value = {"data": {"smartAccount": {"latestAuthenticatorId": None}}}
        self.assertEqual(await indexer.latest_authenticator_id(self.ABSTRACT_ACCOUNT), 0)

        execute.return_value = {"data": {"smartAccount": None}}
        with self.assertRaisesRegex(ProtocolStateError, "not found on indexer"):
            await indexer.latest_authenticator_id(self.ABSTRACT_ACCOUNT)

        execute.return_value = {"errors": [{"message": "bad"}]}
        with self.assertRaisesRegex(ExternalServiceError, "Indexer query failed"):
            await indexer.latest_authenticator_id(self.ABSTRACT_ACCOUNT)

    async def test_indexer_authenticator_lookups(self):
        node = {
            "id": "xion1abstract-3",
            "type": "JWT",
            "authenticator": "project-live.user-1",
            "authenticatorIndex": 3,
            "version": "1",
        }
        execute = self._patch(
            "python_graphql_client.GraphqlClient.execute_async",
            return_value={
                "data": {"smartAccounts": {"nodes": [{"authenticators": {"nodes": [node]}}]}}
            },
        )
        indexer = IndexerClient()
        self.assertEqual(
            await indexer.authenticator_id_by_authenticator(
                self.ABSTRACT_ACCOUNT, "project-live.user-1"
            ),
            3,
        )
        self.assertIsNone(
            await indexer.authenticator_id_by_authenticator(self.ABSTRACT_ACCOUNT, "other")
        )
        self.assertEqual(await indexer.authenticator_id_by_index(self.ABSTRACT_ACCOUNT, 3), 3)
        self.assertEqual(execute.call_args.args[1], {"id": self.ABSTRACT_ACCOUNT, "index": 3})

        execute.return_value = {"data": {"smartAccounts": {"nodes": []}}}
        with self.assertRaisesRegex(ProtocolStateError, "No authenticator at index 3"):
            await indexer.authenticator_id_by_index(self.ABSTRACT_ACCOUNT, 3)

        execute.return_value = {
            "data": {"smartAccounts": {"nodes": [{"authenticators": {"nodes": []}}]}}
        }
        with self.assertRaisesRegex(ProtocolStateError, "No authenticator at index 3"):
            await indexer.authenticator_id_by_index(self.ABSTRACT_ACCOUNT, 3)

    async def test_aa_api_eth_wallet_flow(self):
        post = self._patch(
            "httpx.AsyncClient.post",
            side_effect=[
                httpx.Response(
                    200,
                    json={
                        "message_to_sign": "xion1predicted",
                        "predicted_address": "xion1predicted",
                        "salt": "ab" * 32,
                        "wallet_type": "EthWallet",
                        "metadata": {"action": "create_abstraxion_account"},
                    },
                ),
                httpx.Response(
                    200,
                    json={
                        "account_address": "xion1predicted",
                        "code_id": 1,
                        "transaction_hash": "HASH",
                    },
                ),
            ],
        )
        signed_messages = []

        async def sign_message(message: str) -> str:
            signed_messages.append(message)
            return "0x" + "1b" * 65

        api = AAApiClient("https://aa.example")
        result = await api.create_eth_wallet_account("0x" + "11" * 20, sign_message)

        self.assertEqual(result, CreateAccountResponse("xion1predicted", 1, "HASH"))
        self.assertEqual(signed_messages, [utf8_to_hex_with_prefix("xion1predicted")])
        prepare_call, create_call = post.call_args_list
        self.assertEqual(
            prepare_call.args[0], "https://aa.example/api/v1/wallet-accounts/prepare"
        )
        self.assertEqual(
            prepare_call.kwargs["json"],
            {"wallet_type": "EthWallet", "address": "0x" + "11" * 20},
        )
        body = create_call.kwargs["json"]
        self.assertEqual(body["signature"], "1b" * 65)
        self.assertEqual(body["salt"], "ab" * 32)
        self.assertEqual(json.loads(body["message"]), {"action": "create_abstraxion_account"})

    async def test_aa_api_error_message(self):
        self._patch(
            "httpx.AsyncClient.post",
            return_value=httpx.Response(400, json={"error": {"message": "bad pubkey"}}),
        )
        api = AAApiClient("https://aa.example")
        with self.assertRaisesRegex(ExternalServiceError, "bad pubkey"):
            await api.prepare(AuthenticatorKind.SECP256K1, "02" * 33)

    async def test_aa_api_jwt_accounts(self):
        get = self._patch(
            "httpx.AsyncClient.get",
            return_value=httpx.Response(
                200,
                json=[
                    {"id": "xion1a", "codeId": 1, "authenticators": []},
                    {"id": "xion1b", "codeId": "x", "authenticators": []},
                ],
            ),
        )
        api = AAApiClient("https://aa.example/")
        accounts = await api.jwt_accounts("project-live-1", "user/1")
        self.assertEqual([a["id"] for a in accounts], ["xion1a"])
        self.assertEqual(
            get.call_args.args[0],
            "https://aa.example/api/v1/jwt-accounts/project-live-1/user%2F1",
        )

        get.return_value = httpx.Response(404)
        self.assertEqual(await api.jwt_accounts("aud", "sub"), [])

    async def test_aa_api_v2_create_validation(self):
        api = AAApiClient("https://aa.example")
        with self.assertRaisesRegex(InputValidationError, "auth_payload"):
            await api.create_account(AuthenticatorKind.JWT, {"jwt": "token"})
        with self.assertRaisesRegex(InputValidationError, "does not support"):
            await api.create_account(AuthenticatorKind.PASSKEY, {})
