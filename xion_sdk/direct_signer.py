# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Signer for abstract accounts controlled by a Cosmos secp256k1 wallet.

The wallet (Keplr, Leap, a local key) exposes exactly one account and a
"sign arbitrary" function. The signer asks the indexer which authenticators of
the abstract account are registered for that wallet's public key, and signs the
serialized ``SignDoc`` with the arbitrary-message function.

Without an indexer, the signer trusts its configured authenticator id and
reports a single entry for it.
"""

from __future__ import annotations

import base64
import unittest
import unittest.mock
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from typing_extensions import Protocol

from .aa_signer import (
    EMPTY_PUB_KEY,
    AAAlgo,
    AASigner,
    AAccountData,
    DirectSignResponse,
    StdSignature,
)
from .account import Account
from .account_address import AccountAddress
from .async_client import IndexerClient
from .errors import ProtocolStateError
from .secp256k1_ecdsa import Signature
from .transactions import SignDoc, make_sign_bytes


@dataclass(frozen=True)
class WalletAccount:
    address: str
    algo: str
    pubkey: bytes


class OfflineWallet(Protocol):
    async def get_accounts(self) -> List[WalletAccount]:
        ...


# (chain_id, signer_address, message) -> signature
SignArbitraryFn = Callable[[str, str, bytes], Awaitable[StdSignature]]


class DirectSigner(AASigner):
    """Signs with a secp256k1 wallet on behalf of an abstract account.

    :param wallet: Source of the wallet's accounts. It must hold exactly one.
    :param sign_arbitrary: Signs ``(chain_id, signer_address, message)``.
    :param authenticator_id: The authenticator the wallet key is registered as.
    :param indexer: Resolves the wallet key to authenticator ids; ``None`` to
        use ``authenticator_id`` as is.
    """

    wallet: OfflineWallet
    sign_arbitrary: SignArbitraryFn
    indexer: Optional[IndexerClient]

    def __init__(
        self,
        wallet: OfflineWallet,
        sign_arbitrary: SignArbitraryFn,
        authenticator_id: int,
        indexer: Optional[IndexerClient] = None,
    ):
        super().__init__(authenticator_id)
        self.wallet = wallet
        self.sign_arbitrary = sign_arbitrary
        self.indexer = indexer

    @staticmethod
    def from_account(
        account: Account, authenticator_id: int, indexer: Optional[IndexerClient] = None
    ) -> DirectSigner:
        """A signer backed by a local key."""
        wallet = LocalWallet(account)
        return DirectSigner(wallet, wallet.sign_arbitrary, authenticator_id, indexer)

    async def wallet_account(self) -> WalletAccount:
        accounts = await self.wallet.get_accounts()
        if len(accounts) != 1:
            raise ProtocolStateError(
                f"Wallet must expose exactly one account, got {len(accounts)}"
            )
        return accounts[0]

    async def get_accounts(self, abstract_account: str) -> List[AAccountData]:
        wallet_account = await self.wallet_account()
        if self.indexer is None:
            return [
                AAccountData(
                    address=abstract_account,
                    account_address=wallet_account.address,
                    authenticator_id=self.authenticator_id,
                    algo=wallet_account.algo,
                    aaalgo=AAAlgo.parse(wallet_account.algo),
                )
            ]
        return await self.indexer.aa_accounts(
            wallet_account.address,
            wallet_account.pubkey,
            wallet_account.algo,
            abstract_account,
        )

    async def sign_direct(
        self, signer_address: str, sign_doc: SignDoc
    ) -> DirectSignResponse:
        signature = await self.sign_arbitrary(
            sign_doc.chain_id, signer_address, make_sign_bytes(sign_doc)
        )
        return DirectSignResponse.from_signature(sign_doc, signature.signature)


class LocalWallet:
    """An :class:`OfflineWallet` over a single local :class:`Account`."""

    def __init__(self, account: Account):
        self.account = account

    async def get_accounts(self) -> List[WalletAccount]:
        return [
            WalletAccount(
                address=str(self.account.address()),
                algo=AAAlgo.SECP256K1.value,
                pubkey=self.account.public_key().to_crypto_bytes(),
            )
        ]

    async def sign_arbitrary(
        self, chain_id: str, signer_address: str, message: bytes
    ) -> StdSignature:
        signature = self.account.sign(message)
        return StdSignature(EMPTY_PUB_KEY, base64.b64encode(signature.data()).decode())


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.abstract_account = str(AccountAddress(bytes(range(32))))
        self.account = Account.generate()
        self.sign_doc = SignDoc(b"body", b"auth", "xion-testnet-1", 9)

    async def test_local_signer_without_indexer(self):
        signer = DirectSigner.from_account(self.account, 3)
        accounts = await signer.bind(self.abstract_account).get_accounts()
        self.assertEqual(
            accounts,
            [
                AAccountData(
                    address=self.abstract_account,
                    account_address=str(self.account.address()),
                    authenticator_id=3,
                    algo="secp256k1",
                    aaalgo=AAAlgo.SECP256K1,
                )
            ],
        )

    async def test_sign_direct_signs_serialized_sign_doc(self):
        signer = DirectSigner.from_account(self.account, 0)
        response = await signer.sign_direct(str(self.account.address()), self.sign_doc)
        self.assertEqual(response.signature.pub_key, EMPTY_PUB_KEY)
        signature = response.signature.signature_bytes()
        self.assertEqual(len(signature), 64)
        self.assertTrue(
            self.account.public_key().verify(
                make_sign_bytes(self.sign_doc), Signature(signature)
            )
        )

    async def test_sign_arbitrary_receives_chain_and_signer(self):
        calls = []

        async def sign_arbitrary(chain_id, signer_address, message):
            calls.append((chain_id, signer_address, message))
            return StdSignature(EMPTY_PUB_KEY, base64.b64encode(b"\x01" * 64).decode())

        signer = DirectSigner(LocalWallet(self.account), sign_arbitrary, 1)
        response = await signer.sign_direct("xion1wallet", self.sign_doc)
        self.assertEqual(
            calls, [("xion-testnet-1", "xion1wallet", make_sign_bytes(self.sign_doc))]
        )
        self.assertEqual(response.signature.signature_bytes(), b"\x01" * 64)

    async def test_wallet_must_have_exactly_one_account(self):
        class EmptyWallet:
            async def get_accounts(self):
                return []

        class TwoWallet:
            async def get_accounts(self):
                return [WalletAccount("a", "secp256k1", b""), WalletAccount("b", "secp256k1", b"")]

        for wallet in (EmptyWallet(), TwoWallet()):
            signer = DirectSigner(wallet, LocalWallet(self.account).sign_arbitrary, 0)
            with self.assertRaises(ProtocolStateError):
                await signer.get_accounts(self.abstract_account)

    async def test_indexer_resolution(self):
        entry = AAccountData(
            self.abstract_account, str(self.account.address()), 5, "secp256k1"
        )
        patcher = unittest.mock.patch(
            "xion_sdk.async_client.IndexerClient.aa_accounts", return_value=[entry]
        )
        aa_accounts = patcher.start()
        self.addCleanup(patcher.stop)

        signer = DirectSigner.from_account(self.account, 5, IndexerClient())
        bound = signer.bind(self.abstract_account)
        self.assertEqual(await bound.account_for_authenticator(), entry)
        aa_accounts.assert_called_once_with(
            str(self.account.address()),
            self.account.public_key().to_crypto_bytes(),
            "secp256k1",
            self.abstract_account,
        )
