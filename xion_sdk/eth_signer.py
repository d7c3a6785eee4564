# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Signer for abstract accounts controlled by an Ethereum wallet.

The serialized ``SignDoc`` is handed to the wallet's ``personal_sign`` as a
``0x``-prefixed hex string, so the wallet signs the EIP-191 digest of the raw
sign bytes. The account contract's EthWallet authenticator recovers the
address from that signature.

Signatures returned by the wallet are validated strictly: they must be exactly
65 bytes of hex, with or without ``0x``. Anything else is rejected rather than
repaired.
"""

from __future__ import annotations

import base64
import unittest
from typing import Awaitable, Callable, List

from eth_account import Account as EthAccount
from eth_account.messages import encode_defunct

from .aa_signer import AASigner, AAccountData, DirectSignResponse
from .account_address import AccountAddress
from .errors import InputValidationError
from .hex_validation import is_valid_hex, normalize_hex_prefix
from .signature import format_eth_signature
from .transactions import SignDoc, make_sign_bytes

# hex message with 0x -> hex signature
PersonalSignFn = Callable[[str], Awaitable[str]]


class EthSigner(AASigner):
    """
    :param personal_sign: Signs a ``0x`` hex message, returning a 65-byte hex signature.
    :param authenticator_id: The id of the account's EthWallet authenticator.
    """

    personal_sign: PersonalSignFn

    def __init__(self, personal_sign: PersonalSignFn, authenticator_id: int):
        super().__init__(authenticator_id)
        self.personal_sign = personal_sign

    async def get_accounts(self, abstract_account: str) -> List[AAccountData]:
        return [
            AAccountData(
                address=abstract_account,
                account_address=abstract_account,
                authenticator_id=self.authenticator_id,
                algo="secp256k1",
            )
        ]

    async def sign_direct(
        self, signer_address: str, sign_doc: SignDoc
    ) -> DirectSignResponse:
        message = "0x" + make_sign_bytes(sign_doc).hex()
        signature = await self.personal_sign(message)
        if not is_valid_hex(normalize_hex_prefix(signature)):
            raise InputValidationError("Invalid signature: wallet returned non-hex data")
        signature_bytes = bytes.fromhex(format_eth_signature(signature)[2:])
        return DirectSignResponse.from_signature(
            sign_doc, base64.b64encode(signature_bytes).decode()
        )


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.abstract_account = str(AccountAddress(bytes(range(32))))
        self.wallet = EthAccount.create()
        self.sign_doc = SignDoc(b"body", b"auth", "xion-testnet-1", 2)

    async def personal_sign(self, message: str) -> str:
        signed = EthAccount.sign_message(encode_defunct(hexstr=message), self.wallet.key)
        return signed.signature.hex()

    async def test_sign_direct_recovers_wallet(self):
        messages = []

        async def personal_sign(message: str) -> str:
            messages.append(message)
            return await self.personal_sign(message)

        signer = EthSigner(personal_sign, 1)
        response = await signer.bind(self.abstract_account).sign_direct(
            self.abstract_account, self.sign_doc
        )
        self.assertEqual(messages, ["0x" + make_sign_bytes(self.sign_doc).hex()])

        signature = response.signature.signature_bytes()
        self.assertEqual(len(signature), 65)
        recovered = EthAccount.recover_message(
            encode_defunct(primitive=make_sign_bytes(self.sign_doc)),
            signature=signature,
        )
        self.assertEqual(recovered, self.wallet.address)

    async def test_accepts_signature_with_or_without_prefix(self):
        raw = "ab" * 65

        async def unprefixed(message: str) -> str:
            return raw

        async def prefixed(message: str) -> str:
            return "0x" + raw

        for personal_sign in (unprefixed, prefixed):
            response = await EthSigner(personal_sign, 0).sign_direct("", self.sign_doc)
            self.assertEqual(response.signature.signature_bytes(), bytes.fromhex(raw))

    async def test_rejects_malformed_signatures(self):
        for bad in ("zz" * 65, "ab" * 64, "0xab-" + "ab" * 64, ""):

            async def personal_sign(message: str, bad=bad) -> str:
                return bad

            with self.assertRaises(InputValidationError):
                await EthSigner(personal_sign, 0).sign_direct("", self.sign_doc)

    async def test_get_accounts(self):
        signer = EthSigner(self.personal_sign, 4)
        (account,) = await signer.bind(self.abstract_account).get_accounts()
        self.assertEqual(account.address, self.abstract_account)
        self.assertEqual(account.account_address, self.abstract_account)
        self.assertEqual(account.authenticator_id, 4)
        self.assertEqual(account.pubkey, b"")
