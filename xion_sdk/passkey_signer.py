# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Signer for abstract accounts controlled by a WebAuthn passkey.

The WebAuthn ceremony itself happens outside this package. The signer hands the
challenge, ``sha256(sign_bytes)``, to a ``get_credential`` callback and ships
the assertion it returns, serialized as JSON and base64 encoded, as the
transaction proof. The account contract's Passkey authenticator parses and
verifies it.
"""

from __future__ import annotations

import base64
import hashlib
import json
import unittest
import unittest.mock
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .aa_signer import AASigner, AAccountData, DirectSignResponse
from .account_address import AccountAddress
from .async_client import IndexerClient
from .errors import ExternalServiceError, ProtocolStateError
from .transactions import SignDoc, make_sign_bytes

# challenge -> public key credential as JSON-compatible dict, or None if the
# user cancelled the ceremony
GetCredentialFn = Callable[[bytes], Awaitable[Optional[Dict[str, Any]]]]


class PasskeySigner(AASigner):
    """
    :param get_credential: Runs the WebAuthn assertion ceremony for a challenge.
    :param authenticator_id: The authenticator id, or the authenticator index
        when ``indexer`` is given.
    :param indexer: Maps the authenticator index to its id on the account.
    """

    get_credential: GetCredentialFn
    indexer: Optional[IndexerClient]

    def __init__(
        self,
        get_credential: GetCredentialFn,
        authenticator_id: int,
        indexer: Optional[IndexerClient] = None,
    ):
        super().__init__(authenticator_id)
        self.get_credential = get_credential
        self.indexer = indexer

    def accepts(self, account: AAccountData) -> bool:
        if self.indexer is not None:
            # authenticator_id is an index here, the entry carries the real id
            return True
        return super().accepts(account)

    async def get_accounts(self, abstract_account: str) -> List[AAccountData]:
        authenticator_id = self.authenticator_id
        if self.indexer is not None:
            authenticator_id = await self.indexer.authenticator_id_by_index(
                abstract_account, self.authenticator_id
            )
        return [
            AAccountData(
                address=abstract_account,
                account_address=abstract_account,
                authenticator_id=authenticator_id,
                algo="secp256k1",
            )
        ]

    async def sign_direct(
        self, signer_address: str, sign_doc: SignDoc
    ) -> DirectSignResponse:
        challenge = hashlib.sha256(make_sign_bytes(sign_doc)).digest()
        credential = await self.get_credential(challenge)
        if not credential:
            raise ExternalServiceError("Failed to get WebAuthn credential")
        payload = json.dumps(credential, separators=(",", ":")).encode("utf-8")
        return DirectSignResponse.from_bytes(sign_doc, payload)


class Test(unittest.IsolatedAsyncioTestCase):
    CREDENTIAL = {
        "id": "cred-1",
        "type": "public-key",
        "response": {
            "authenticatorData": "SZYN5YgO",
            "clientDataJSON": "eyJ0eXBlIjoid2ViYXV0aG4uZ2V0In0",
            "signature": "MEUCIQ",
        },
    }

    def setUp(self):
        self.abstract_account = str(AccountAddress(bytes(range(32))))
        self.sign_doc = SignDoc(b"body", b"auth", "xion-testnet-1", 2)

    async def test_sign_direct(self):
        challenges = []

        async def get_credential(challenge: bytes):
            challenges.append(challenge)
            return Test.CREDENTIAL

        signer = PasskeySigner(get_credential, 1)
        response = await signer.sign_direct(self.abstract_account, self.sign_doc)
        self.assertEqual(
            challenges, [hashlib.sha256(make_sign_bytes(self.sign_doc)).digest()]
        )
        self.assertEqual(
            json.loads(base64.b64decode(response.signature.signature)), Test.CREDENTIAL
        )

    async def test_cancelled_ceremony(self):
        async def get_credential(challenge: bytes):
            return None

        with self.assertRaisesRegex(ExternalServiceError, "WebAuthn credential"):
            await PasskeySigner(get_credential, 1).sign_direct("", self.sign_doc)

    async def test_get_accounts_resolves_index(self):
        patcher = unittest.mock.patch(
            "xion_sdk.async_client.IndexerClient.authenticator_id_by_index",
            return_value=6,
        )
        by_index = patcher.start()
        self.addCleanup(patcher.stop)

        async def get_credential(challenge: bytes):
            return Test.CREDENTIAL

        signer = PasskeySigner(get_credential, 2, IndexerClient())
        (account,) = await signer.bind(self.abstract_account).get_accounts()
        self.assertEqual(account.authenticator_id, 6)
        by_index.assert_called_once_with(self.abstract_account, 2)

        (account,) = await PasskeySigner(get_credential, 2).get_accounts(
            self.abstract_account
        )
        self.assertEqual(account.authenticator_id, 2)

        by_index.side_effect = ProtocolStateError("No authenticator at index 2")
        with self.assertRaisesRegex(ProtocolStateError, "No authenticator at index 2"):
            await signer.get_accounts(self.abstract_account)
