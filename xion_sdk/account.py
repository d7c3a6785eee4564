# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import json
import tempfile
import unittest
from typing import List

from .account_address import DEFAULT_PREFIX, AccountAddress
from .secp256k1_ecdsa import PrivateKey, PublicKey, Signature
from .transactions import (
    SECP256K1_PUBKEY_TYPE_URL,
    Any,
    SignDoc,
    SignerData,
    StdFee,
    TxBody,
    TxRaw,
    coins,
    make_auth_info,
    make_secp256k1_pubkey,
    make_sign_bytes,
)


class Account:
    """A key-owned secp256k1 account, the ordinary counterpart of an abstract account.

    Regular Cosmos accounts carry their public key on chain and are verified by
    the chain itself. :class:`~xion_sdk.aa_client.AAClient` signs for them with
    an ``Account`` when the signer address resolves to such an account, and the
    :class:`~xion_sdk.direct_signer.DirectSigner` can use one as the wallet that
    signs on behalf of an abstract account's Secp256K1 authenticator.

    Examples:
        Create and persist an account::

            from xion_sdk.account import Account

            account = Account.generate()
            print(f"Address: {account.address()}")
            account.store("./wallet.json")
            restored = Account.load("./wallet.json")

        Sign a transaction body directly::

            tx = account.sign_transaction(body, signer_data, fee)
            await client.broadcast_tx(tx)

    Note:
        The address is ``ripemd160(sha256(compressed public key))`` under the
        account's prefix, so the same key yields the same address bytes on
        every Cosmos chain.
    """

    account_address: AccountAddress
    private_key: PrivateKey

    def __init__(self, account_address: AccountAddress, private_key: PrivateKey):
        self.account_address = account_address
        self.private_key = private_key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Account):
            return NotImplemented
        return (
            self.account_address == other.account_address
            and self.private_key == other.private_key
        )

    @staticmethod
    def generate(prefix: str = DEFAULT_PREFIX) -> Account:
        private_key = PrivateKey.random()
        account_address = AccountAddress.from_key(private_key.public_key(), prefix)
        return Account(account_address, private_key)

    @staticmethod
    def load_key(key: str, prefix: str = DEFAULT_PREFIX) -> Account:
        """Load an account from a hex private key, with or without ``0x``."""
        private_key = PrivateKey.from_str(key)
        account_address = AccountAddress.from_key(private_key.public_key(), prefix)
        return Account(account_address, private_key)

    @staticmethod
    def load(path: str) -> Account:
        with open(path) as file:
            data = json.load(file)
        return Account(
            AccountAddress.from_str(data["account_address"]),
            PrivateKey.from_str(data["private_key"]),
        )

    def store(self, path: str):
        """Write the address and private key to a JSON file.

        The private key is stored in plaintext.
        """
        data = {
            "account_address": str(self.account_address),
            "private_key": self.private_key.hex(),
        }
        with open(path, "w") as file:
            json.dump(data, file)

    def address(self) -> AccountAddress:
        return self.account_address

    def public_key(self) -> PublicKey:
        return self.private_key.public_key()

    def public_key_any(self) -> Any:
        """The account's key as the ``Any`` carried in a regular ``SignerInfo``."""
        return make_secp256k1_pubkey(self.public_key().to_crypto_bytes())

    def sign(self, data: bytes) -> Signature:
        return self.private_key.sign(data)

    def sign_direct(self, sign_doc: SignDoc) -> Signature:
        """Sign the serialized ``SignDoc`` in ``SIGN_MODE_DIRECT``."""
        return self.sign(make_sign_bytes(sign_doc))

    def sign_transaction(
        self,
        messages: List[Any],
        signer_data: SignerData,
        fee: StdFee,
        memo: str = "",
    ) -> TxRaw:
        """Build, sign and assemble a transaction for this key-owned account."""
        body_bytes = TxBody(messages=messages, memo=memo).to_bytes()
        auth_info_bytes = make_auth_info(
            self.public_key().to_crypto_bytes(), signer_data.sequence, fee
        ).to_bytes()
        sign_doc = SignDoc(
            body_bytes=body_bytes,
            auth_info_bytes=auth_info_bytes,
            chain_id=signer_data.chain_id,
            account_number=signer_data.account_number,
        )
        signature = self.sign_direct(sign_doc)
        return TxRaw(body_bytes, auth_info_bytes, [signature.data()])


class Test(unittest.TestCase):
    def test_load_and_store(self):
        (file, path) = tempfile.mkstemp()
        start = Account.generate()
        start.store(path)
        load = Account.load(path)

        self.assertEqual(start, load)
        self.assertEqual(start.address(), AccountAddress.from_key(start.public_key()))

    def test_key(self):
        message = b"test message"
        account = Account.generate()
        signature = account.sign(message)
        self.assertTrue(account.public_key().verify(message, signature))

    def test_load_key_with_prefix(self):
        key = "0x306fa009600e27c09d2659145ce1785249360dd5fb992da01a578fe67ed607f4"
        xion = Account.load_key(key)
        cosmos = Account.load_key(key, "cosmos")
        self.assertTrue(str(xion.address()).startswith("xion1"))
        self.assertTrue(str(cosmos.address()).startswith("cosmos1"))
        self.assertEqual(xion.address().address, cosmos.address().address)

    def test_public_key_any(self):
        account = Account.generate()
        pubkey_any = account.public_key_any()
        self.assertEqual(pubkey_any.type_url, SECP256K1_PUBKEY_TYPE_URL)
        self.assertEqual(
            pubkey_any.value, b"\x0a\x21" + account.public_key().to_crypto_bytes()
        )

    def test_sign_transaction(self):
        account = Account.generate()
        signer_data = SignerData(account_number=7, sequence=3, chain_id="xion-testnet-1")
        fee = StdFee(amount=coins(500, "uxion"), gas="200000")
        tx = account.sign_transaction([], signer_data, fee, "memo")

        sign_doc = SignDoc(tx.body_bytes, tx.auth_info_bytes, "xion-testnet-1", 7)
        self.assertEqual(len(tx.signatures), 1)
        self.assertTrue(
            account.public_key().verify(
                make_sign_bytes(sign_doc), Signature(tx.signatures[0])
            )
        )
