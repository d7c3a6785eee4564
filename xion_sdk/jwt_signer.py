# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Signer for abstract accounts controlled by a JWT (email / social login) session.

There is no key on the client. The signer authenticates its session token
against the session service, asking for a JWT whose ``transaction_hash``
custom claim is ``base64(sha256(sign_bytes))``. The returned ``session_jwt``
is the proof: the account contract's Jwt authenticator checks the token's
issuer signature, its ``aud`` and ``sub``, and that the claim matches the
transaction being executed.

Examples:
    Signing with a session token::

        signer = JWTSigner(session_token, authenticator_id=1)
        client = AAClient(rest_client, signer)
        tx = await client.sign(abstract_account, messages, fee)

    Proving control of the session for an arbitrary message::

        signature = await signer.sign_direct_arb("login nonce 1234")
"""

from __future__ import annotations

import base64
import hashlib
import logging
import unittest
import unittest.mock
from typing import Any, Dict, List, Optional

import httpx

from .aa_signer import AAAlgo, AASigner, AAccountData, DirectSignResponse
from .account_address import AccountAddress
from .async_client import ClientConfig, IndexerClient, make_http_client
from .errors import ExternalServiceError, ProtocolStateError
from .transactions import SignDoc, make_sign_bytes

DEFAULT_SESSION_URL = "https://aa.xion-testnet-1.burnt.com/api/v1"
SESSION_DURATION_MINUTES = 60 * 24 * 30


class JWTSigner(AASigner):
    """
    :param session_token: The login session token. May be set later; signing
        without one fails.
    :param authenticator_id: The id of the account's Jwt authenticator.
    :param account_authenticator: The authenticator material, ``"aud.sub"``. When
        given together with ``indexer``, the authenticator id is looked up.
    :param indexer: Resolves ``account_authenticator`` to its id.
    :param session_url: Base URL of the session service.
    """

    session_token: Optional[str]
    account_authenticator: Optional[str]
    indexer: Optional[IndexerClient]
    session_url: str
    client: httpx.AsyncClient

    def __init__(
        self,
        session_token: Optional[str],
        authenticator_id: int,
        account_authenticator: Optional[str] = None,
        indexer: Optional[IndexerClient] = None,
        session_url: str = DEFAULT_SESSION_URL,
        client_config: ClientConfig = ClientConfig(),
    ):
        super().__init__(authenticator_id)
        self.session_token = session_token
        self.account_authenticator = account_authenticator
        self.indexer = indexer
        self.session_url = session_url.rstrip("/")
        self.client = make_http_client(client_config)

    async def close(self):
        await self.client.aclose()

    def accepts(self, account: AAccountData) -> bool:
        if self.indexer is not None and self.account_authenticator:
            # get_accounts returns only the entry the indexer resolved
            return True
        return super().accepts(account)

    async def get_accounts(self, abstract_account: str) -> List[AAccountData]:
        authenticator_id = self.authenticator_id
        if self.indexer is not None and self.account_authenticator:
            found = await self.indexer.authenticator_id_by_authenticator(
                abstract_account, self.account_authenticator
            )
            if found is None:
                return []
            authenticator_id = found
        return [
            AAccountData(
                address=abstract_account,
                account_address=abstract_account,
                authenticator_id=authenticator_id,
                algo=AAAlgo.SECP256K1.value,
                aaalgo=AAAlgo.JWT,
            )
        ]

    async def sign_direct(
        self, signer_address: str, sign_doc: SignDoc
    ) -> DirectSignResponse:
        session_jwt = await self.authenticate(make_sign_bytes(sign_doc))
        return DirectSignResponse.from_bytes(sign_doc, session_jwt.encode("utf-8"))

    async def sign_direct_arb(self, message: str) -> str:
        """Base64 session JWT whose ``transaction_hash`` claim commits to ``message``."""
        session_jwt = await self.authenticate(message.encode("utf-8"))
        return base64.b64encode(session_jwt.encode("utf-8")).decode()

    async def authenticate(self, data: bytes) -> str:
        """Exchange the session token for a JWT carrying ``sha256(data)`` as a claim.

        Raises:
            ProtocolStateError: If no session token is set.
            ExternalServiceError: If the service rejects the session or returns no JWT.
        """
        if self.session_token is None:
            raise ProtocolStateError("stytch session token is undefined")
        transaction_hash = base64.b64encode(hashlib.sha256(data).digest()).decode()
        response = await self.client.post(
            f"{self.session_url}/sessions/authenticate",
            json={
                "session_token": self.session_token,
                "session_duration_minutes": SESSION_DURATION_MINUTES,
                "session_custom_claims": {"transaction_hash": transaction_hash},
            },
        )
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Failed to authenticate with stytch: {response.text}",
                response.status_code,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise ExternalServiceError(
                f"Session service returned a non-JSON response: {response.text}",
                response.status_code,
            ) from e
        session_jwt = _session_jwt(body) if isinstance(body, dict) else None
        if not session_jwt:
            raise ExternalServiceError(
                "Session service response has no session_jwt", response.status_code
            )
        logging.info("authenticated session for transaction hash %s", transaction_hash)
        return session_jwt


def _session_jwt(body: Dict[str, Any]) -> Optional[str]:
    if body.get("session_jwt"):
        return body["session_jwt"]
    data = body.get("data")
    if isinstance(data, dict):
        return data.get("session_jwt")
    return None


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        patcher = unittest.mock.patch(
            "xion_sdk.metadata.Metadata.get_xion_header_val",
            return_value="xion-python-sdk/test",
        )
        patcher.start()
        self.addCleanup(patcher.stop)
        self.abstract_account = str(AccountAddress(bytes(range(32))))
        self.sign_doc = SignDoc(b"body", b"auth", "xion-testnet-1", 2)

    def _patch_post(self, response: httpx.Response) -> unittest.mock.MagicMock:
        patcher = unittest.mock.patch("httpx.AsyncClient.post", return_value=response)
        post = patcher.start()
        self.addCleanup(patcher.stop)
        return post

    async def test_missing_session_token(self):
        signer = JWTSigner(None, 1)
        with self.assertRaisesRegex(ProtocolStateError, "session token is undefined"):
            await signer.sign_direct(self.abstract_account, self.sign_doc)

    async def test_sign_direct_returns_session_jwt(self):
        post = self._patch_post(httpx.Response(200, json={"session_jwt": "mock-jwt"}))
        signer = JWTSigner(None, 1)
        signer.session_token = "session-token"

        response = await signer.bind(self.abstract_account).sign_direct(
            self.abstract_account, self.sign_doc
        )
        self.assertEqual(
            response.signature.signature, base64.b64encode(b"mock-jwt").decode()
        )
        self.assertEqual(
            post.call_args.args[0],
            "https://aa.xion-testnet-1.burnt.com/api/v1/sessions/authenticate",
        )
        body = post.call_args.kwargs["json"]
        self.assertEqual(body["session_token"], "session-token")
        self.assertEqual(body["session_duration_minutes"], 43200)
        self.assertEqual(
            body["session_custom_claims"]["transaction_hash"],
            base64.b64encode(
                hashlib.sha256(make_sign_bytes(self.sign_doc)).digest()
            ).decode(),
        )

    async def test_nested_session_jwt_and_arbitrary_message(self):
        self._patch_post(httpx.Response(200, json={"data": {"session_jwt": "nested"}}))
        signer = JWTSigner("session-token", 1)
        self.assertEqual(
            await signer.sign_direct_arb("hello"), base64.b64encode(b"nested").decode()
        )

    async def test_service_failures(self):
        post = self._patch_post(httpx.Response(401, text="expired"))
        signer = JWTSigner("session-token", 1)
        with self.assertRaisesRegex(ExternalServiceError, "Failed to authenticate") as cm:
            await signer.sign_direct(self.abstract_account, self.sign_doc)
        self.assertEqual(cm.exception.status_code, 401)

        post.return_value = httpx.Response(200, json={"data": {}})
        with self.assertRaisesRegex(ExternalServiceError, "no session_jwt"):
            await signer.sign_direct(self.abstract_account, self.sign_doc)

    async def test_malformed_session_responses(self):
        post = self._patch_post(httpx.Response(200, text="<html>oops</html>"))
        signer = JWTSigner("session-token", 1)
        with self.assertRaisesRegex(ExternalServiceError, "non-JSON") as cm:
            await signer.sign_direct(self.abstract_account, self.sign_doc)
        self.assertEqual(cm.exception.status_code, 200)

        post.return_value = httpx.Response(200, json=["session_jwt"])
        with self.assertRaisesRegex(ExternalServiceError, "no session_jwt"):
            await signer.sign_direct_arb("hello")

    async def test_get_accounts_with_indexer(self):
        patcher = unittest.mock.patch(
            "xion_sdk.async_client.IndexerClient.authenticator_id_by_authenticator",
            return_value=3,
        )
        lookup = patcher.start()
        self.addCleanup(patcher.stop)

        signer = JWTSigner("t", 0, "project-live.user-1", IndexerClient())
        (account,) = await signer.bind(self.abstract_account).get_accounts()
        self.assertEqual(account.authenticator_id, 3)
        self.assertIs(account.aaalgo, AAAlgo.JWT)
        lookup.assert_called_once_with(self.abstract_account, "project-live.user-1")

        lookup.return_value = None
        self.assertEqual(await signer.get_accounts(self.abstract_account), [])
