# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Transaction signing for abstract accounts.

:class:`AAClient` turns messages into a signed ``TxRaw`` for an abstract
account:

1. The signer address is looked up on chain. An account with a public key is
   an ordinary account and is signed for by the configured
   :class:`~xion_sdk.account.Account`; nothing below applies to it.
2. The :class:`~xion_sdk.aa_signer.AASigner` is bound to the address and must
   report exactly one entry for its authenticator id.
3. The ``AuthInfo`` routes verification to the account contract: its single
   signer carries a ``NilPubKey`` wrapping the account's address bytes
   (see :func:`~xion_sdk.transactions.make_aa_auth_info`).
4. The signer signs the ``SignDoc`` and the transaction signature becomes
   ``[authenticator id] ++ signature``.

There are no retries at this layer. Every failure raises and leaves nothing
behind.

Examples:
    Sending tokens from an abstract account::

        rest = RestClient(TESTNET.rest_url)
        signer = DirectSigner.from_account(wallet, authenticator_id=0)
        client = AAClient(rest, signer)
        msg = MsgSend(abstract_account, recipient, coins(1000, "uxion"))
        result = await client.sign_and_broadcast(abstract_account, [msg], "auto")

    Adding a JWT authenticator::

        client = AAClient(rest, signer.bind(abstract_account), indexer=IndexerClient())
        msg = await client.build_add_jwt_authenticator_msg(aud, sub, token)
        await client.add_abstract_account_authenticator(msg)
"""

from __future__ import annotations

import logging
import math
import re
import unittest
import unittest.mock
from typing import Any as AnyType
from typing import Dict, List, Optional, Union

import httpx

from .aa_signer import (
    AASigner,
    AAccountData,
    BoundSigner,
    DirectSignResponse,
)
from .account import Account
from .account_address import AccountAddress
from .async_client import (
    TESTNET,
    ChainAccount,
    IndexerClient,
    RestClient,
    calculate_fee,
)
from .direct_signer import DirectSigner
from .errors import ProtocolStateError
from .jwt_signer import JWTSigner
from .hex_validation import decode_bech32
from .messages import (
    Msg,
    MsgRegisterAccount,
    MsgSend,
    add_jwt_authenticator,
    execute_on_self,
    remove_authenticator,
)
from .passkey_signer import PasskeySigner
from .secp256k1_ecdsa import Signature
from .transactions import (
    Any,
    Coin,
    SignDoc,
    SignerData,
    StdFee,
    TxBody,
    TxRaw,
    coins,
    make_aa_auth_info,
    make_auth_info,
    make_sign_bytes,
    make_simulation_auth_info,
)

AUTO_FEE = "auto"
SIMULATION_MEMO = "AA Gas Simulation"

Message = Union[Msg, Any]
FeeArg = Union[StdFee, str]


def _to_any(message: Message) -> Any:
    if isinstance(message, Msg):
        return message.to_any()
    return message


class AAClient:
    """Signs and submits transactions for abstract accounts.

    :param rest_client: Chain gateway used for accounts, chain id, simulation and broadcast.
    :param signer: The authenticator strategy, bound or unbound. An unbound
        signer is bound to each ``signer_address`` as it is signed for.
    :param account: Key-owned account used when the signer address turns out
        to be an ordinary account.
    :param indexer: Needed only by :meth:`build_add_jwt_authenticator_msg`.
    """

    rest_client: RestClient
    signer: Union[AASigner, BoundSigner]
    account: Optional[Account]
    indexer: Optional[IndexerClient]

    def __init__(
        self,
        rest_client: RestClient,
        signer: Union[AASigner, BoundSigner],
        account: Optional[Account] = None,
        indexer: Optional[IndexerClient] = None,
    ):
        self.rest_client = rest_client
        self.signer = signer
        self.account = account
        self.indexer = indexer

    @property
    def abstract_account(self) -> Optional[str]:
        """The account the signer is bound to, if it is bound."""
        if isinstance(self.signer, BoundSigner):
            return self.signer.bound_account
        return None

    def _bound_signer(self, signer_address: str) -> BoundSigner:
        if isinstance(self.signer, BoundSigner):
            return self.signer
        return self.signer.bind(signer_address)

    def _require_abstract_account(self) -> str:
        if self.abstract_account is None:
            raise ProtocolStateError("Abstract account address not set in signer")
        return self.abstract_account

    async def get_account(self, address: str) -> Optional[ChainAccount]:
        return await self.rest_client.account(address)

    async def get_chain_id(self) -> str:
        return await self.rest_client.chain_id()

    async def _signer_data(
        self, chain_account: ChainAccount, explicit_signer_data: Optional[SignerData]
    ) -> SignerData:
        if explicit_signer_data is not None:
            return explicit_signer_data
        return SignerData(
            account_number=chain_account.account_number,
            sequence=chain_account.sequence,
            chain_id=await self.get_chain_id(),
        )

    async def sign(
        self,
        signer_address: str,
        messages: List[Message],
        fee: StdFee,
        memo: str = "",
        explicit_signer_data: Optional[SignerData] = None,
    ) -> TxRaw:
        """
        Sign ``messages`` for ``signer_address``.

        :param signer_address: The abstract account, or an ordinary account
            when a key-owned :class:`Account` is configured.
        :param explicit_signer_data: Account number, sequence and chain id to
            sign with instead of the on-chain values.
        :return: The signed transaction, ready to broadcast.
        :raises ProtocolStateError: If the account is not on chain, the signer
            has no entry for its authenticator, or an ordinary account has no
            key configured.
        """
        anys = [_to_any(message) for message in messages]
        chain_account = await self.get_account(signer_address)

        if chain_account is not None and chain_account.pubkey:
            logging.info("%s is a key-owned account, signing directly", signer_address)
            return await self._sign_with_key(
                chain_account, anys, fee, memo, explicit_signer_data
            )

        if chain_account is None:
            raise ProtocolStateError("Failed to retrieve AA account from chain")

        bound = self._bound_signer(signer_address)
        account_from_signer = await bound.account_for_authenticator()
        signer_data = await self._signer_data(chain_account, explicit_signer_data)

        _, address_bytes = decode_bech32(account_from_signer.address, "signer address")
        body_bytes = TxBody(messages=anys, memo=memo).to_bytes()
        auth_info_bytes = make_aa_auth_info(
            address_bytes, signer_data.sequence, fee
        ).to_bytes()
        sign_doc = SignDoc(
            body_bytes=body_bytes,
            auth_info_bytes=auth_info_bytes,
            chain_id=signer_data.chain_id,
            account_number=signer_data.account_number,
        )

        response = await bound.sign_direct(account_from_signer.account_address, sign_doc)
        signature = bytes([account_from_signer.authenticator_id])
        signature += response.signature.signature_bytes()
        return TxRaw(body_bytes, auth_info_bytes, [signature])

    async def _sign_with_key(
        self,
        chain_account: ChainAccount,
        messages: List[Any],
        fee: StdFee,
        memo: str,
        explicit_signer_data: Optional[SignerData],
    ) -> TxRaw:
        if self.account is None:
            raise ProtocolStateError(
                f"{chain_account.address} is a key-owned account but no Account is configured"
            )
        if str(self.account.address()) != chain_account.address:
            raise ProtocolStateError(
                f"Configured Account {self.account.address()} cannot sign for "
                f"{chain_account.address}"
            )
        signer_data = await self._signer_data(chain_account, explicit_signer_data)
        return self.account.sign_transaction(messages, signer_data, fee, memo)

    async def simulate(
        self, signer_address: str, messages: List[Message], memo: Optional[str] = None
    ) -> int:
        """Gas used by ``messages``, simulated with an empty signature.

        :raises ProtocolStateError: If the account is not on chain or the signer
            has no entry for its authenticator.
        """
        chain_account = await self.get_account(signer_address)
        if chain_account is None:
            raise ProtocolStateError(f"Account {signer_address} not found on chain")

        if chain_account.pubkey:
            auth_info = make_auth_info(
                chain_account.pubkey, chain_account.sequence, StdFee(amount=[], gas="0")
            )
        else:
            account_from_signer = await self._bound_signer(
                signer_address
            ).account_for_authenticator()
            _, address_bytes = decode_bech32(account_from_signer.address, "signer address")
            auth_info = make_simulation_auth_info(address_bytes, chain_account.sequence)

        body = TxBody(
            messages=[_to_any(message) for message in messages],
            memo=memo or SIMULATION_MEMO,
        )
        tx = TxRaw(body.to_bytes(), auth_info.to_bytes(), [b""])
        return await self.rest_client.simulate(tx)

    async def simulate_default_fee(
        self, signer_address: str, messages: List[Message], memo: Optional[str] = None
    ) -> StdFee:
        """A fee for ``messages`` derived from simulation and the client config.

        Testnet chains are charged nothing.
        """
        config = self.rest_client.client_config
        simulated_gas = await self.simulate(signer_address, messages, memo)
        calculated_gas = math.ceil(simulated_gas * config.gas_adjustment)
        calculated_fee = calculate_fee(calculated_gas, config.gas_price, config.gas_denom)
        gas = str(
            math.ceil(calculated_gas * config.gas_adjustment + config.gas_adjustment_margin)
        )

        chain_id = await self.get_chain_id()
        if re.search("testnet", chain_id):
            return StdFee(amount=[Coin(config.gas_denom, "0")], gas=gas)
        return StdFee(amount=calculated_fee.amount, gas=gas)

    async def broadcast_tx(self, tx: TxRaw) -> Dict[str, AnyType]:
        return await self.rest_client.broadcast_tx(tx)

    async def sign_and_broadcast(
        self,
        signer_address: str,
        messages: List[Message],
        fee: FeeArg,
        memo: str = "",
    ) -> Dict[str, AnyType]:
        """Sign and broadcast; a fee of ``"auto"`` is estimated by simulation."""
        if isinstance(fee, str):
            if fee != AUTO_FEE:
                raise ValueError(f"Unknown fee: {fee}")
            fee = await self.simulate_default_fee(signer_address, messages, memo)
        tx = await self.sign(signer_address, messages, fee, memo)
        return await self.broadcast_tx(tx)

    async def register_abstract_account(
        self, msg: MsgRegisterAccount
    ) -> Dict[str, AnyType]:
        """Broadcast ``MsgRegisterAccount`` from its sender with an automatic fee."""
        return await self.sign_and_broadcast(msg.sender, [msg], AUTO_FEE)

    async def add_abstract_account_authenticator(
        self, msg: Dict[str, AnyType], memo: str = "", fee: Optional[StdFee] = None
    ) -> Dict[str, AnyType]:
        """Execute an ``add_auth_method`` message on the bound account."""
        return await self._execute_on_self(msg, memo, fee)

    async def remove_abstract_account_authenticator(
        self, msg: Dict[str, AnyType], memo: str = "", fee: Optional[StdFee] = None
    ) -> Dict[str, AnyType]:
        """Execute a ``remove_auth_method`` message on the bound account."""
        return await self._execute_on_self(msg, memo, fee)

    async def _execute_on_self(
        self, msg: Dict[str, AnyType], memo: str, fee: Optional[StdFee]
    ) -> Dict[str, AnyType]:
        sender = self._require_abstract_account()
        execute = execute_on_self(sender, msg)
        if fee is None:
            fee = await self.simulate_default_fee(sender, [execute], memo)
        tx = await self.sign(sender, [execute], fee, memo)
        return await self.broadcast_tx(tx)

    async def build_add_jwt_authenticator_msg(
        self, aud: str, sub: str, token: str
    ) -> Dict[str, AnyType]:
        """An ``add_auth_method`` message for a JWT identity at the next free id."""
        abstract_account = self._require_abstract_account()
        if self.indexer is None:
            raise ProtocolStateError("An indexer is required to pick the authenticator id")
        latest = await self.indexer.latest_authenticator_id(abstract_account)
        return add_jwt_authenticator(latest + 1, aud, sub, token)


class Test(unittest.IsolatedAsyncioTestCase):
    class FixedSigner(AASigner):
        def __init__(self, authenticator_id: int, signature: bytes, entries: List[AAccountData]):
            super().__init__(authenticator_id)
            self.signature = signature
            self.entries = entries
            self.signed: List[SignDoc] = []

        async def get_accounts(self, abstract_account: str) -> List[AAccountData]:
            return self.entries

        async def sign_direct(self, signer_address: str, sign_doc: SignDoc) -> DirectSignResponse:
            self.signed.append(sign_doc)
            return DirectSignResponse.from_bytes(sign_doc, self.signature)

    def setUp(self):
        patcher = unittest.mock.patch(
            "xion_sdk.metadata.Metadata.get_xion_header_val",
            return_value="xion-python-sdk/test",
        )
        patcher.start()
        self.addCleanup(patcher.stop)

        self.abstract_account = str(AccountAddress(bytes(range(32))))
        self.wallet = Account.generate()
        self.fee = StdFee(amount=coins(500, "uxion"), gas="200000")
        self.message = MsgSend(self.abstract_account, str(self.wallet.address()), coins(1, "uxion"))
        self.rest = RestClient(TESTNET.rest_url)
        self.abstract_chain_account = ChainAccount(
            address=self.abstract_account, pubkey=None, account_number=11, sequence=4
        )
        self.get_account = self._patch(
            "xion_sdk.async_client.RestClient.account",
            return_value=self.abstract_chain_account,
        )
        self._patch("xion_sdk.async_client.RestClient.chain_id", return_value="xion-testnet-1")

    def _patch(self, target: str, **kwargs) -> unittest.mock.MagicMock:
        patcher = unittest.mock.patch(target, **kwargs)
        mock = patcher.start()
        self.addCleanup(patcher.stop)
        return mock

    def _entry(self, authenticator_id: int) -> AAccountData:
        return AAccountData(
            address=self.abstract_account,
            account_address=str(self.wallet.address()),
            authenticator_id=authenticator_id,
            algo="secp256k1",
        )

    async def test_abstract_account_signature_layout(self):
        raw = bytes(range(64))
        signer = Test.FixedSigner(7, raw, [self._entry(7)])
        client = AAClient(self.rest, signer)

        tx = await client.sign(self.abstract_account, [self.message], self.fee, "memo")

        self.assertEqual(len(tx.signatures), 1)
        self.assertEqual(tx.signatures[0][0], 7)
        self.assertEqual(tx.signatures[0][1:], raw)
        self.assertEqual(
            tx.auth_info_bytes,
            make_aa_auth_info(bytes(range(32)), 4, self.fee).to_bytes(),
        )
        self.assertEqual(
            tx.body_bytes, TxBody([self.message.to_any()], "memo").to_bytes()
        )
        (sign_doc,) = signer.signed
        self.assertEqual(sign_doc.chain_id, "xion-testnet-1")
        self.assertEqual(sign_doc.account_number, 11)
        self.assertEqual(sign_doc.body_bytes, tx.body_bytes)

    async def test_key_owned_account_skips_routing_auth_info(self):
        self.get_account.return_value = ChainAccount(
            address=str(self.wallet.address()),
            pubkey=self.wallet.public_key().to_crypto_bytes(),
            account_number=2,
            sequence=0,
        )
        routing = self._patch("xion_sdk.aa_client.make_aa_auth_info")
        signer = Test.FixedSigner(0, b"", [])
        client = AAClient(self.rest, signer, account=self.wallet)

        tx = await client.sign(str(self.wallet.address()), [self.message], self.fee)

        routing.assert_not_called()
        self.assertEqual(signer.signed, [])
        sign_doc = SignDoc(tx.body_bytes, tx.auth_info_bytes, "xion-testnet-1", 2)
        self.assertTrue(
            self.wallet.public_key().verify(
                make_sign_bytes(sign_doc), Signature(tx.signatures[0])
            )
        )

        with self.assertRaises(ProtocolStateError):
            await AAClient(self.rest, signer).sign(
                str(self.wallet.address()), [self.message], self.fee
            )

    async def test_direct_signer_end_to_end(self):
        signer = DirectSigner.from_account(self.wallet, 0)
        client = AAClient(self.rest, signer)
        explicit = SignerData(account_number=99, sequence=8, chain_id="xion-mainnet-1")

        tx = await client.sign(self.abstract_account, [self.message], self.fee, "", explicit)

        self.assertEqual(tx.signatures[0][0], 0)
        sign_doc = SignDoc(tx.body_bytes, tx.auth_info_bytes, "xion-mainnet-1", 99)
        self.assertTrue(
            self.wallet.public_key().verify(
                make_sign_bytes(sign_doc), Signature(tx.signatures[0][1:])
            )
        )
        self.assertEqual(
            tx.auth_info_bytes,
            make_aa_auth_info(bytes(range(32)), 8, self.fee).to_bytes(),
        )

    async def test_resolution_failures(self):
        client = AAClient(self.rest, Test.FixedSigner(1, b"sig", [self._entry(2)]))
        with self.assertRaisesRegex(ProtocolStateError, "Failed to retrieve account from signer"):
            await client.sign(self.abstract_account, [self.message], self.fee)

        self.get_account.return_value = None
        with self.assertRaisesRegex(ProtocolStateError, "AA account from chain"):
            await client.sign(self.abstract_account, [self.message], self.fee)

    async def test_simulate_default_fee(self):
        simulate = self._patch("xion_sdk.async_client.RestClient.simulate", return_value=100_000)
        client = AAClient(self.rest, Test.FixedSigner(1, b"", [self._entry(1)]))

        fee = await client.simulate_default_fee(self.abstract_account, [self.message])
        self.assertEqual(fee.gas, str(math.ceil(130_000 * 1.3 + 100_000)))
        self.assertEqual(fee.amount, [Coin("uxion", "0")])

        (tx,) = simulate.call_args.args
        self.assertEqual(tx.signatures, [b""])
        self.assertEqual(
            tx.auth_info_bytes,
            make_simulation_auth_info(bytes(range(32)), 4).to_bytes(),
        )
        self.assertEqual(
            tx.body_bytes, TxBody([self.message.to_any()], SIMULATION_MEMO).to_bytes()
        )

        self._patch("xion_sdk.async_client.RestClient.chain_id", return_value="xion-mainnet-1")
        fee = await client.simulate_default_fee(self.abstract_account, [self.message])
        self.assertEqual(fee.amount, [Coin("uxion", "130")])

    async def test_sign_and_broadcast_auto_fee(self):
        self._patch("xion_sdk.async_client.RestClient.simulate", return_value=50_000)
        broadcast = self._patch(
            "xion_sdk.async_client.RestClient.broadcast_tx", return_value={"txhash": "AB"}
        )
        signer = Test.FixedSigner(1, b"\x01" * 64, [self._entry(1)])
        client = AAClient(self.rest, signer)

        result = await client.sign_and_broadcast(self.abstract_account, [self.message], AUTO_FEE)
        self.assertEqual(result, {"txhash": "AB"})
        (tx,) = broadcast.call_args.args
        self.assertEqual(tx.signatures[0], b"\x01" + b"\x01" * 64)

    async def test_authenticator_management(self):
        broadcast = self._patch(
            "xion_sdk.async_client.RestClient.broadcast_tx", return_value={"txhash": "AB"}
        )
        latest = self._patch(
            "xion_sdk.async_client.IndexerClient.latest_authenticator_id", return_value=2
        )
        signer = Test.FixedSigner(1, b"\x01" * 64, [self._entry(1)])

        with self.assertRaisesRegex(ProtocolStateError, "not set in signer"):
            await AAClient(self.rest, signer).remove_abstract_account_authenticator(
                remove_authenticator(3), fee=self.fee
            )

        client = AAClient(self.rest, signer.bind(self.abstract_account), indexer=IndexerClient())
        msg = await client.build_add_jwt_authenticator_msg("aud", "sub", "token")
        self.assertEqual(msg["add_auth_method"]["add_authenticator"]["Jwt"]["id"], 3)
        latest.assert_called_once_with(self.abstract_account)

        await client.add_abstract_account_authenticator(msg, fee=self.fee)
        (tx,) = broadcast.call_args.args
        self.assertEqual(
            tx.body_bytes,
            TxBody([execute_on_self(self.abstract_account, msg).to_any()]).to_bytes(),
        )

    async def test_indexer_backed_jwt_signer(self):
        lookup = self._patch(
            "xion_sdk.async_client.IndexerClient.authenticator_id_by_authenticator",
            return_value=3,
        )
        self._patch(
            "httpx.AsyncClient.post",
            return_value=httpx.Response(200, json={"session_jwt": "session-jwt"}),
        )
        signer = JWTSigner("session-token", 0, "aud.sub", IndexerClient())

        tx = await AAClient(self.rest, signer).sign(
            self.abstract_account, [self.message], self.fee
        )
        self.assertEqual(tx.signatures[0], b"\x03" + b"session-jwt")
        lookup.assert_called_once_with(self.abstract_account, "aud.sub")

        lookup.return_value = None
        with self.assertRaisesRegex(ProtocolStateError, "Failed to retrieve account"):
            await AAClient(self.rest, signer).sign(
                self.abstract_account, [self.message], self.fee
            )

    async def test_indexer_backed_passkey_signer(self):
        self._patch(
            "xion_sdk.async_client.IndexerClient.authenticator_id_by_index",
            return_value=6,
        )

        async def get_credential(challenge: bytes):
            return {"id": "credential"}

        signer = PasskeySigner(get_credential, 1, IndexerClient())
        tx = await AAClient(self.rest, signer).sign(
            self.abstract_account, [self.message], self.fee
        )
        self.assertEqual(tx.signatures[0][0], 6)
        self.assertEqual(tx.signatures[0][1:], b'{"id":"credential"}')
