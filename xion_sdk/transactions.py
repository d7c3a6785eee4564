# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Cosmos SDK transaction types and the abstract-account routing ``AuthInfo``.

This module contains the protobuf message types that make up a signed Cosmos
transaction (``cosmos.tx.v1beta1``) and the helpers that assemble them:

- :class:`TxBody` holds the messages and memo
- :class:`AuthInfo` holds one :class:`SignerInfo` per signer plus the :class:`Fee`
- :class:`SignDoc` is the byte pre-image a ``SIGN_MODE_DIRECT`` signer signs
- :class:`TxRaw` is the broadcastable transaction

Abstract-account routing:
    An abstract account has no public key, yet the chain's ante handler needs a
    signer-info public key to decide how to verify the transaction. The
    convention is a ``/abstractaccount.v1.NilPubKey`` whose payload is the
    two bytes ``0x0a 0x20`` followed by the raw bytes of the account's bech32
    address. Those two bytes are the protobuf key and length of
    ``NilPubKey.address_bytes`` for a 32-byte contract address; they are
    written literally, exactly as the chain's clients do. When the ante handler
    sees this type it dispatches verification to the account contract, which
    reads the leading authenticator id from the transaction signature.
    :func:`make_aa_auth_info` is the only place that builds this layout.

Examples:
    Assembling a sign doc for an abstract account::

        from xion_sdk.transactions import (
            SignDoc, StdFee, TxBody, make_aa_auth_info, coins,
        )

        body = TxBody(messages=[msg.to_any()], memo="")
        auth_info = make_aa_auth_info(
            account_address_bytes, sequence=4, fee=StdFee(coins(500, "uxion"), "200000")
        )
        sign_doc = SignDoc(body.to_bytes(), auth_info.to_bytes(), "xion-testnet-1", 12)
"""

from __future__ import annotations

import unittest
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional

from .protobuf import Deserializer, Serializer, encoder

NIL_PUBKEY_TYPE_URL = "/abstractaccount.v1.NilPubKey"
NIL_PUBKEY_PREFIX = bytes([10, 32])
TX_BODY_TYPE_URL = "/cosmos.tx.v1beta1.TxBody"
SECP256K1_PUBKEY_TYPE_URL = "/cosmos.crypto.secp256k1.PubKey"
DEFAULT_FEE_DENOM = "uxion"


class SignMode(IntEnum):
    SIGN_MODE_UNSPECIFIED = 0
    SIGN_MODE_DIRECT = 1
    SIGN_MODE_TEXTUAL = 2
    SIGN_MODE_LEGACY_AMINO_JSON = 127


@dataclass
class Coin:
    denom: str
    amount: str

    def serialize(self, serializer: Serializer):
        serializer.str(1, self.denom)
        serializer.str(2, self.amount)

    def to_dict(self) -> dict:
        return {"denom": self.denom, "amount": self.amount}

    @staticmethod
    def from_dict(value: dict) -> Coin:
        return Coin(denom=value["denom"], amount=str(value["amount"]))


def coins(amount: int | str, denom: str) -> List[Coin]:
    """A single-coin list, the shape fees and funds are written in."""
    return [Coin(denom=denom, amount=str(amount))]


@dataclass
class Any:
    """``google.protobuf.Any``: a type URL plus the encoded message."""

    type_url: str
    value: bytes

    def serialize(self, serializer: Serializer):
        serializer.str(1, self.type_url)
        serializer.to_bytes(2, self.value)

    @staticmethod
    def from_bytes(data: bytes) -> Any:
        fields = Deserializer(data).field_map()
        type_url = fields.get(1, [b""])[0]
        value = fields.get(2, [b""])[0]
        assert isinstance(type_url, bytes) and isinstance(value, bytes)
        return Any(type_url.decode("utf-8"), value)


@dataclass
class StdFee:
    """A fee as callers specify it: coins, a gas limit string, optional granter/payer."""

    amount: List[Coin]
    gas: str
    granter: Optional[str] = None
    payer: Optional[str] = None


@dataclass
class Fee:
    amount: List[Coin]
    gas_limit: int
    payer: str = ""
    granter: str = ""

    def serialize(self, serializer: Serializer):
        serializer.repeated_struct(1, self.amount)
        serializer.uint64(2, self.gas_limit)
        serializer.str(3, self.payer)
        serializer.str(4, self.granter)


@dataclass
class ModeInfo:
    """``ModeInfo`` with the ``single`` variant, the only one used here."""

    mode: SignMode = SignMode.SIGN_MODE_DIRECT

    def serialize(self, serializer: Serializer):
        serializer.struct(1, _SingleMode(self.mode))


@dataclass
class _SingleMode:
    mode: SignMode

    def serialize(self, serializer: Serializer):
        serializer.enum(1, self.mode)


@dataclass
class SignerInfo:
    public_key: Optional[Any]
    mode_info: ModeInfo
    sequence: int

    def serialize(self, serializer: Serializer):
        if self.public_key is not None:
            serializer.struct(1, self.public_key)
        serializer.struct(2, self.mode_info)
        serializer.uint64(3, self.sequence)


@dataclass
class AuthInfo:
    signer_infos: List[SignerInfo]
    fee: Fee

    def serialize(self, serializer: Serializer):
        serializer.repeated_struct(1, self.signer_infos)
        serializer.struct(2, self.fee)

    def to_bytes(self) -> bytes:
        return encoder(self)


@dataclass
class TxBody:
    messages: List[Any]
    memo: str = ""
    timeout_height: int = 0

    def serialize(self, serializer: Serializer):
        serializer.repeated_struct(1, self.messages)
        serializer.str(2, self.memo)
        serializer.uint64(3, self.timeout_height)

    def to_bytes(self) -> bytes:
        return encoder(self)


@dataclass(frozen=True)
class SignDoc:
    """The immutable pre-image signed in ``SIGN_MODE_DIRECT``."""

    body_bytes: bytes
    auth_info_bytes: bytes
    chain_id: str
    account_number: int

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(1, self.body_bytes)
        serializer.to_bytes(2, self.auth_info_bytes)
        serializer.str(3, self.chain_id)
        serializer.uint64(4, self.account_number)


@dataclass
class TxRaw:
    body_bytes: bytes
    auth_info_bytes: bytes
    signatures: List[bytes] = field(default_factory=list)

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(1, self.body_bytes)
        serializer.to_bytes(2, self.auth_info_bytes)
        serializer.repeated_bytes(3, self.signatures)

    def to_bytes(self) -> bytes:
        return encoder(self)

    @staticmethod
    def from_bytes(data: bytes) -> TxRaw:
        fields = Deserializer(data).field_map()
        body = fields.get(1, [b""])[0]
        auth_info = fields.get(2, [b""])[0]
        signatures = fields.get(3, [])
        assert isinstance(body, bytes) and isinstance(auth_info, bytes)
        return TxRaw(body, auth_info, [bytes(s) for s in signatures])  # type: ignore[arg-type]


@dataclass(frozen=True)
class SignerData:
    account_number: int
    sequence: int
    chain_id: str


def make_sign_bytes(sign_doc: SignDoc) -> bytes:
    return encoder(sign_doc)


def make_nil_pubkey(address_bytes: bytes) -> Any:
    """The sentinel public key that routes verification to the account contract."""
    return Any(NIL_PUBKEY_TYPE_URL, NIL_PUBKEY_PREFIX + address_bytes)


def to_fee(fee: StdFee) -> Fee:
    """Convert a caller fee to its wire form.

    Only the first coin is kept; a fee without coins is charged ``1uxion``.
    """
    if fee.amount:
        amount = coins(fee.amount[0].amount, fee.amount[0].denom)
    else:
        amount = coins(1, DEFAULT_FEE_DENOM)
    return Fee(
        amount=amount,
        gas_limit=int(fee.gas),
        granter=fee.granter or "",
        payer=fee.payer or "",
    )


def make_aa_auth_info(address_bytes: bytes, sequence: int, fee: StdFee) -> AuthInfo:
    """Build the routing ``AuthInfo`` for an abstract account.

    Args:
        address_bytes: Raw bytes of the abstract account's bech32 address.
        sequence: The account's current sequence number.
        fee: The fee to pay.

    Returns:
        An ``AuthInfo`` with a single direct-mode signer whose public key is the
        ``NilPubKey`` sentinel wrapping ``address_bytes``.
    """
    return AuthInfo(
        signer_infos=[
            SignerInfo(
                public_key=make_nil_pubkey(address_bytes),
                mode_info=ModeInfo(SignMode.SIGN_MODE_DIRECT),
                sequence=sequence,
            )
        ],
        fee=to_fee(fee),
    )


def make_simulation_auth_info(address_bytes: bytes, sequence: int) -> AuthInfo:
    """The routing ``AuthInfo`` with an empty fee, used for gas simulation."""
    return AuthInfo(
        signer_infos=[
            SignerInfo(
                public_key=make_nil_pubkey(address_bytes),
                mode_info=ModeInfo(SignMode.SIGN_MODE_DIRECT),
                sequence=sequence,
            )
        ],
        fee=Fee(amount=[], gas_limit=0),
    )


def make_secp256k1_pubkey(public_key: bytes) -> Any:
    return Any(SECP256K1_PUBKEY_TYPE_URL, encoder(_Secp256k1PubKey(public_key)))


def make_auth_info(
    public_key: bytes, sequence: int, fee: StdFee
) -> AuthInfo:
    """An ordinary single-signer ``AuthInfo`` for a secp256k1 key-owned account."""
    return AuthInfo(
        signer_infos=[
            SignerInfo(
                public_key=make_secp256k1_pubkey(public_key),
                mode_info=ModeInfo(SignMode.SIGN_MODE_DIRECT),
                sequence=sequence,
            )
        ],
        fee=Fee(
            amount=list(fee.amount),
            gas_limit=int(fee.gas),
            granter=fee.granter or "",
            payer=fee.payer or "",
        ),
    )


@dataclass
class _Secp256k1PubKey:
    key: bytes

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(1, self.key)


class Test(unittest.TestCase):
    ADDRESS = bytes(range(32))

    def test_nil_pubkey_layout(self):
        pubkey = make_nil_pubkey(self.ADDRESS)
        self.assertEqual(pubkey.type_url, "/abstractaccount.v1.NilPubKey")
        self.assertEqual(pubkey.value, b"\x0a\x20" + self.ADDRESS)

    def test_aa_auth_info_bytes(self):
        fee = StdFee(amount=coins(500, "uxion"), gas="200000", granter="xion1granter")
        auth_info = make_aa_auth_info(self.ADDRESS, 7, fee).to_bytes()

        fields = Deserializer(auth_info).field_map()
        self.assertEqual(len(fields[1]), 1)
        signer_info = Deserializer(fields[1][0]).field_map()  # type: ignore[arg-type]
        public_key = Any.from_bytes(signer_info[1][0])  # type: ignore[arg-type]
        self.assertEqual(public_key, make_nil_pubkey(self.ADDRESS))
        # mode_info { single { mode: SIGN_MODE_DIRECT } }
        self.assertEqual(signer_info[2], [b"\x0a\x02\x08\x01"])
        self.assertEqual(signer_info[3], [7])

        fee_fields = Deserializer(fields[2][0]).field_map()  # type: ignore[arg-type]
        self.assertEqual(fee_fields[1], [b"\x0a\x05uxion\x12\x03500"])
        self.assertEqual(fee_fields[2], [200000])
        self.assertNotIn(3, fee_fields)
        self.assertEqual(fee_fields[4], [b"xion1granter"])

    def test_aa_auth_info_exact_prefix(self):
        auth_info = make_aa_auth_info(
            self.ADDRESS, 0, StdFee(coins(1, "uxion"), "1")
        ).to_bytes()
        type_url = b"/abstractaccount.v1.NilPubKey"
        nil_pubkey_any = (
            b"\x0a" + bytes([len(type_url)]) + type_url
            + b"\x12\x22\x0a\x20" + self.ADDRESS
        )
        signer_info = b"\x0a" + bytes([len(nil_pubkey_any)]) + nil_pubkey_any
        signer_info += b"\x12\x04\x0a\x02\x08\x01"
        self.assertTrue(
            auth_info.startswith(b"\x0a" + bytes([len(signer_info)]) + signer_info)
        )

    def test_fee_keeps_first_coin_or_defaults(self):
        fee = to_fee(StdFee(amount=coins(5, "uxion") + coins(9, "uatom"), gas="10"))
        self.assertEqual(fee.amount, coins(5, "uxion"))
        self.assertEqual(to_fee(StdFee(amount=[], gas="10")).amount, coins(1, "uxion"))

    def test_simulation_auth_info_has_empty_fee(self):
        fields = Deserializer(
            make_simulation_auth_info(self.ADDRESS, 3).to_bytes()
        ).field_map()
        self.assertEqual(fields[2], [b""])

    def test_sign_doc_and_tx_raw(self):
        sign_doc = SignDoc(b"body", b"auth", "xion-testnet-1", 12)
        self.assertEqual(
            make_sign_bytes(sign_doc),
            b"\x0a\x04body\x12\x04auth\x1a\x0exion-testnet-1\x20\x0c",
        )
        tx = TxRaw(b"body", b"auth", [b"\x01sig"])
        self.assertEqual(TxRaw.from_bytes(tx.to_bytes()), tx)

    def test_tx_body(self):
        body = TxBody(messages=[Any("/a", b"\x01")], memo="hi")
        self.assertEqual(body.to_bytes(), b"\x0a\x07\x0a\x02/a\x12\x01\x01\x12\x02hi")
