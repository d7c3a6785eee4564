# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Signer abstraction for abstract accounts.

An abstract account has no key of its own. Each transaction is authorized by
one of the account's registered authenticators, and the account contract checks
the proof that authenticator produced. An :class:`AASigner` is the client-side
half of one authenticator: it knows which authenticator id it speaks for, which
wallet accounts stand behind it, and how to turn a ``SignDoc`` into a proof.

Lifecycle:
    Signers are frequently constructed before the abstract account address is
    known (for example, right after a wallet connects). A signer is therefore
    created *unbound*, and :meth:`AASigner.bind` returns a :class:`BoundSigner`
    tied to one account address. Only a bound signer can enumerate the
    account's authenticators or take part in transaction signing, so "sign
    before the account is known" cannot be expressed.

    Binding is cheap and stateless: the unbound signer is never mutated, and
    one ``BoundSigner`` should serve a single in-flight signing operation.

Signatures:
    :meth:`AASigner.sign_direct` returns a :class:`DirectSignResponse` whose
    ``signature.signature`` is the base64 proof. The chain selects the
    authenticator by id, not by public key, so ``signature.pub_key`` is always
    :data:`EMPTY_PUB_KEY`, an explicit empty sentinel kept only because the
    response shape requires the field.

Examples:
    Implementing a strategy::

        class MySigner(AASigner):
            async def get_accounts(self, abstract_account):
                return [AAccountData(abstract_account, wallet, self.authenticator_id, "secp256k1")]

            async def sign_direct(self, signer_address, sign_doc):
                proof = await produce_proof(make_sign_bytes(sign_doc))
                return DirectSignResponse.from_signature(sign_doc, proof)

    Using it::

        bound = MySigner(authenticator_id=1).bind("xion1...")
        accounts = await bound.get_accounts()
"""

from __future__ import annotations

import base64
import unittest
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .account_address import AccountAddress
from .authenticator import AuthenticatorKind
from .encoding import decode_base64
from .errors import InputValidationError, ProtocolStateError
from .hex_validation import validate_bech32_address
from .transactions import SignDoc

PUB_KEY_SECP256K1_TYPE = "tendermint/PubKeySecp256k1"


class AAAlgo(str, Enum):
    """Authenticator algorithm as the indexer reports it (lowercase)."""

    SECP256K1 = "secp256k1"
    ED25519 = "ed25519"
    SR25519 = "sr25519"
    JWT = "jwt"

    def to_kind(self) -> AuthenticatorKind:
        return _ALGO_TO_KIND[self]

    @staticmethod
    def parse(value: str) -> Optional[AAAlgo]:
        """The algorithm named by ``value`` (any case), or ``None`` for other algorithms."""
        for algo in AAAlgo:
            if algo.value == value.lower():
                return algo
        return None

    @staticmethod
    def from_kind(kind: AuthenticatorKind) -> AAAlgo:
        for algo, algo_kind in _ALGO_TO_KIND.items():
            if algo_kind is kind:
                return algo
        raise InputValidationError(f"No indexer algorithm for {kind.value}")


_ALGO_TO_KIND = {
    AAAlgo.SECP256K1: AuthenticatorKind.SECP256K1,
    AAAlgo.ED25519: AuthenticatorKind.ED25519,
    AAAlgo.SR25519: AuthenticatorKind.SR25519,
    AAAlgo.JWT: AuthenticatorKind.JWT,
}


@dataclass(frozen=True)
class AAccountData:
    """One authenticator of an abstract account, as seen from a signer.

    Attributes:
        address: The abstract account address.
        account_address: The wallet address that produces signatures for this
            authenticator. Not the abstract account.
        authenticator_id: The authenticator's id on the account; it becomes the
            first byte of the transaction signature.
        algo: The lowercase algorithm name, e.g. ``"secp256k1"``.
        pubkey: Always empty. An empty public key is what marks an account as
            abstract.
        aaalgo: The algorithm as an :class:`AAAlgo`, when it is one.
    """

    address: str
    account_address: str
    authenticator_id: int
    algo: str
    pubkey: bytes = b""
    aaalgo: Optional[AAAlgo] = None


@dataclass(frozen=True)
class PubKey:
    type: str
    value: str


EMPTY_PUB_KEY = PubKey(type=PUB_KEY_SECP256K1_TYPE, value="")


@dataclass(frozen=True)
class StdSignature:
    pub_key: PubKey
    signature: str

    def signature_bytes(self) -> bytes:
        return decode_base64(self.signature, "signature")


@dataclass(frozen=True)
class DirectSignResponse:
    signed: SignDoc
    signature: StdSignature

    @staticmethod
    def from_signature(sign_doc: SignDoc, signature: str) -> DirectSignResponse:
        """Wrap a base64 proof with the empty public-key sentinel."""
        return DirectSignResponse(
            signed=sign_doc,
            signature=StdSignature(pub_key=EMPTY_PUB_KEY, signature=signature),
        )

    @staticmethod
    def from_bytes(sign_doc: SignDoc, signature: bytes) -> DirectSignResponse:
        return DirectSignResponse.from_signature(
            sign_doc, base64.b64encode(signature).decode()
        )


class AASigner(ABC):
    """An unbound signer for one authenticator of an abstract account.

    Attributes:
        authenticator_id: The id of the authenticator this signer produces
            proofs for.
    """

    authenticator_id: int

    def __init__(self, authenticator_id: int):
        if authenticator_id < 0 or authenticator_id > 255:
            raise InputValidationError(
                f"Invalid authenticator id: must fit in one byte, got {authenticator_id}"
            )
        self.authenticator_id = authenticator_id

    def bind(self, abstract_account: str) -> BoundSigner:
        """Bind this signer to an abstract account address.

        Raises:
            InputValidationError: If the address is not valid bech32.
        """
        validate_bech32_address(abstract_account, "abstract account address")
        return BoundSigner(self, abstract_account)

    def accepts(self, account: AAccountData) -> bool:
        """Whether ``account`` is the entry this signer signs as.

        The entry must carry the configured authenticator id. Signers that look
        their id up on the indexer override this.
        """
        return account.authenticator_id == self.authenticator_id

    @abstractmethod
    async def get_accounts(self, abstract_account: str) -> List[AAccountData]:
        """Every authenticator of ``abstract_account`` this signer can sign for."""
        ...

    @abstractmethod
    async def sign_direct(
        self, signer_address: str, sign_doc: SignDoc
    ) -> DirectSignResponse:
        """Produce the authenticator proof for ``sign_doc``."""
        ...


class BoundSigner:
    """An :class:`AASigner` tied to one abstract account.

    This is the form the transaction pipeline consumes; it has no way to exist
    without an account address.
    """

    signer: AASigner
    bound_account: str

    def __init__(self, signer: AASigner, bound_account: str):
        self.signer = signer
        self.bound_account = bound_account

    def __repr__(self) -> str:
        return (
            f"BoundSigner({type(self.signer).__name__}, "
            f"{self.bound_account}, authenticator_id={self.authenticator_id})"
        )

    @property
    def authenticator_id(self) -> int:
        return self.signer.authenticator_id

    async def get_accounts(self) -> List[AAccountData]:
        return await self.signer.get_accounts(self.bound_account)

    async def sign_direct(
        self, signer_address: str, sign_doc: SignDoc
    ) -> DirectSignResponse:
        return await self.signer.sign_direct(signer_address, sign_doc)

    async def account_for_authenticator(self) -> AAccountData:
        """The single account entry this signer accepts, see :meth:`AASigner.accepts`.

        Raises:
            ProtocolStateError: If no entry matches, or more than one does.
        """
        matches = [
            account
            for account in await self.get_accounts()
            if self.signer.accepts(account)
        ]
        if not matches:
            raise ProtocolStateError("Failed to retrieve account from signer")
        if len(matches) > 1:
            raise ProtocolStateError(
                f"Ambiguous signer accounts: {len(matches)} entries for "
                f"authenticator {self.authenticator_id}"
            )
        return matches[0]


class Test(unittest.IsolatedAsyncioTestCase):
    class StaticSigner(AASigner):
        def __init__(self, authenticator_id: int, entries: List[AAccountData]):
            super().__init__(authenticator_id)
            self.entries = entries

        async def get_accounts(self, abstract_account: str) -> List[AAccountData]:
            return [e for e in self.entries if e.address == abstract_account]

        async def sign_direct(
            self, signer_address: str, sign_doc: SignDoc
        ) -> DirectSignResponse:
            return DirectSignResponse.from_bytes(sign_doc, b"proof")

    def setUp(self):
        self.account = str(AccountAddress(bytes(range(32))))

    async def test_bind_and_resolve(self):
        entry = AAccountData(self.account, "xion1wallet", 2, "secp256k1")
        signer = Test.StaticSigner(2, [entry])
        bound = signer.bind(self.account)
        self.assertEqual(bound.bound_account, self.account)
        self.assertEqual(bound.authenticator_id, 2)
        self.assertEqual(await bound.get_accounts(), [entry])
        self.assertEqual(await bound.account_for_authenticator(), entry)

    async def test_bind_validates_address(self):
        signer = Test.StaticSigner(0, [])
        with self.assertRaises(InputValidationError):
            signer.bind("not-an-address")

    async def test_resolution_failures(self):
        entry = AAccountData(self.account, "xion1wallet", 1, "secp256k1")
        with self.assertRaisesRegex(ProtocolStateError, "Failed to retrieve account"):
            await Test.StaticSigner(3, [entry]).bind(self.account).account_for_authenticator()
        with self.assertRaisesRegex(ProtocolStateError, "Ambiguous"):
            await Test.StaticSigner(1, [entry, entry]).bind(
                self.account
            ).account_for_authenticator()

    async def test_accepts_override_picks_resolved_entry(self):
        class ResolvingSigner(Test.StaticSigner):
            def accepts(self, account: AAccountData) -> bool:
                return True

        resolved = AAccountData(self.account, "xion1wallet", 5, "secp256k1")
        signer = ResolvingSigner(0, [resolved])
        self.assertFalse(Test.StaticSigner(0, [resolved]).accepts(resolved))
        self.assertEqual(
            await signer.bind(self.account).account_for_authenticator(), resolved
        )

    async def test_sign_response_uses_empty_pub_key(self):
        sign_doc = SignDoc(b"body", b"auth", "xion-testnet-1", 1)
        response = await Test.StaticSigner(0, []).bind(self.account).sign_direct(
            self.account, sign_doc
        )
        self.assertIs(response.signed, sign_doc)
        self.assertEqual(response.signature.pub_key, EMPTY_PUB_KEY)
        self.assertEqual(response.signature.pub_key.value, "")
        self.assertEqual(response.signature.signature_bytes(), b"proof")

    def test_authenticator_id_range(self):
        with self.assertRaises(InputValidationError):
            Test.StaticSigner(256, [])
        with self.assertRaises(InputValidationError):
            Test.StaticSigner(-1, [])

    def test_algo_mapping(self):
        self.assertIs(AAAlgo.SECP256K1.to_kind(), AuthenticatorKind.SECP256K1)
        self.assertIs(AAAlgo.from_kind(AuthenticatorKind.JWT), AAAlgo.JWT)
        self.assertIs(AAAlgo("ed25519"), AAAlgo.ED25519)
        with self.assertRaises(InputValidationError):
            AAAlgo.from_kind(AuthenticatorKind.PASSKEY)
