# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Signature verification predicates for account-creation proofs.

Before an abstract account is registered, the owner proves control of the
credential by signing a message (usually the predicted account address).
These predicates reproduce the checks the account contract performs, so a
proof that passes here is accepted on chain.

Ethereum wallets:
    The signature is an EIP-191 ``personal_sign`` over the literal UTF-8
    message. The signer is recovered and compared case-insensitively with the
    expected address.

secp256k1 keys (two stages):
    1. Direct: the 64-byte signature is checked against ``sha256(utf8(message))``.
    2. ADR-036: wallets such as Keplr refuse to sign raw bytes and instead sign
       an amino "sign/MsgSignData" envelope. If the direct check fails, the
       signer's bech32 address is derived from the public key, the envelope is
       rebuilt around ``base64(message)``, and the signature is checked against
       the SHA-256 of its canonical JSON.

Errors:
    Both predicates return False for a well-formed signature that does not
    match. A signature or key that cannot be decoded, or has the wrong length,
    raises instead, before any cryptographic work is done.

Examples:
    Verifying a Keplr ``signArbitrary`` result::

        from xion_sdk.signature_verification import verify_secp256k1_signature

        ok = verify_secp256k1_signature(
            predicted_address, signature_hex, pubkey_base64
        )
"""

import base64
import binascii
import json
import logging
import unittest
from typing import Any, Dict

from eth_account import Account
from eth_account.messages import encode_defunct

from .account_address import DEFAULT_PREFIX, AccountAddress
from .errors import CryptographicFailureError, InputValidationError
from .hex_validation import is_valid_hex, normalize_hex_prefix
from .secp256k1_ecdsa import PrivateKey, PublicKey, Signature
from .signature import ETH_SIGNATURE_LENGTH


def _decode_signature_hex(signature: str) -> bytes:
    # bytes.fromhex skips whitespace, which a signature must not contain
    normalized = normalize_hex_prefix(signature)
    if not is_valid_hex(normalized):
        raise CryptographicFailureError(
            f"Failed to decode signature: {signature!r} is not a hex string"
        )
    try:
        return bytes.fromhex(normalized)
    except ValueError as e:
        raise CryptographicFailureError(f"Failed to decode signature: {e}") from e


def verify_eth_wallet_signature(
    message: str, signature: str, expected_address: str
) -> bool:
    """Check an EIP-191 personal-sign signature against an Ethereum address.

    Args:
        message: The exact message that was signed.
        signature: The 65-byte signature as hex, with or without ``0x``.
        expected_address: The address that should have produced it.

    Returns:
        True if the recovered signer equals ``expected_address``.

    Raises:
        CryptographicFailureError: If the signature is not hex or no signer can be
            recovered from it.
        InputValidationError: If the signature is not 65 bytes long.
    """
    signature_bytes = _decode_signature_hex(signature)
    if len(signature_bytes) != ETH_SIGNATURE_LENGTH:
        raise InputValidationError(
            f"Invalid signature: must be {ETH_SIGNATURE_LENGTH} bytes, "
            f"got {len(signature_bytes)}"
        )
    try:
        recovered = Account.recover_message(
            encode_defunct(text=message), signature=signature_bytes
        )
    except Exception as e:
        raise CryptographicFailureError(f"Signature recovery failed: {e}") from e
    return recovered.lower() == expected_address.lower()


def make_adr36_sign_doc(signer: str, data: bytes) -> Dict[str, Any]:
    """The amino sign doc ADR-036 wallets sign for arbitrary ``data``."""
    return {
        "chain_id": "",
        "account_number": "0",
        "sequence": "0",
        "fee": {"gas": "0", "amount": []},
        "msgs": [
            {
                "type": "sign/MsgSignData",
                "value": {
                    "signer": signer,
                    "data": base64.b64encode(data).decode(),
                },
            }
        ],
        "memo": "",
    }


def serialize_sign_doc(sign_doc: Dict[str, Any]) -> bytes:
    """Canonical amino JSON: sorted keys, no whitespace, ``<>&`` escaped."""
    serialized = json.dumps(
        sign_doc, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )
    serialized = (
        serialized.replace("&", "\\u0026")
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
    )
    return serialized.encode("utf-8")


def verify_secp256k1_signature(
    message: str, signature: str, public_key: str, prefix: str = DEFAULT_PREFIX
) -> bool:
    """Check a secp256k1 signature directly, then as an ADR-036 envelope.

    Args:
        message: The exact message that was signed.
        signature: 64-byte ``r || s`` signature as hex, with or without ``0x``.
        public_key: 33- or 65-byte public key as standard base64.
        prefix: Address prefix used to derive the ADR-036 signer.

    Raises:
        CryptographicFailureError: If the signature or key cannot be decoded.
        InputValidationError: If the signature or key has the wrong length.
    """
    signature_bytes = _decode_signature_hex(signature)
    if len(signature_bytes) != Signature.LENGTH:
        raise InputValidationError(
            f"Signature must be {Signature.LENGTH} bytes, got {len(signature_bytes)}"
        )

    try:
        pubkey_bytes = base64.b64decode(public_key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptographicFailureError(f"Failed to decode public key: {e}") from e
    if len(pubkey_bytes) not in (
        PublicKey.COMPRESSED_LENGTH,
        PublicKey.UNCOMPRESSED_LENGTH,
    ):
        raise InputValidationError(
            f"Public key must be 33 or 65 bytes, got {len(pubkey_bytes)}"
        )

    key = PublicKey.from_bytes(pubkey_bytes)
    sig = Signature(signature_bytes)
    message_bytes = message.encode("utf-8")

    if key.verify(message_bytes, sig):
        return True

    signer = str(AccountAddress.from_key(key, prefix))
    sign_doc = make_adr36_sign_doc(signer, message_bytes)
    if key.verify(serialize_sign_doc(sign_doc), sig):
        logging.info("secp256k1 signature for %s verified as ADR-036", signer)
        return True
    return False


class Test(unittest.TestCase):
    MESSAGE = "xion1predictedaddress"

    def setUp(self):
        self.private_key = PrivateKey.from_str(
            "0x306fa009600e27c09d2659145ce1785249360dd5fb992da01a578fe67ed607f4"
        )
        self.public_key = self.private_key.public_key()

    def test_adr36_serialization_layout(self):
        doc = make_adr36_sign_doc("xion1signer", b"hello")
        self.assertEqual(
            serialize_sign_doc(doc),
            b'{"account_number":"0","chain_id":"","fee":{"amount":[],"gas":"0"},'
            b'"memo":"","msgs":[{"type":"sign/MsgSignData","value":'
            b'{"data":"aGVsbG8=","signer":"xion1signer"}}],"sequence":"0"}',
        )
        self.assertEqual(
            serialize_sign_doc({"memo": "<a&b>"}),
            b'{"memo":"\\u003ca\\u0026b\\u003e"}',
        )

    def test_direct_secp256k1_signature(self):
        signature = self.private_key.sign(self.MESSAGE.encode())
        self.assertTrue(
            verify_secp256k1_signature(
                self.MESSAGE, signature.hex(), self.public_key.base64()
            )
        )
        self.assertTrue(
            verify_secp256k1_signature(
                self.MESSAGE, "0x" + signature.hex(), self.public_key.base64()
            )
        )
        self.assertFalse(
            verify_secp256k1_signature(
                "another message", signature.hex(), self.public_key.base64()
            )
        )
        other_key = PrivateKey.random().public_key()
        self.assertFalse(
            verify_secp256k1_signature(self.MESSAGE, signature.hex(), other_key.base64())
        )

    def test_adr36_secp256k1_signature(self):
        signer = str(AccountAddress.from_key(self.public_key))
        sign_bytes = serialize_sign_doc(
            make_adr36_sign_doc(signer, self.MESSAGE.encode())
        )
        signature = self.private_key.sign(sign_bytes)
        self.assertTrue(
            verify_secp256k1_signature(
                self.MESSAGE, signature.hex(), self.public_key.base64()
            )
        )
        # Under a different prefix the derived signer changes, so the envelope does too.
        self.assertFalse(
            verify_secp256k1_signature(
                self.MESSAGE, signature.hex(), self.public_key.base64(), "cosmos"
            )
        )

    def test_uncompressed_public_key(self):
        signature = self.private_key.sign(self.MESSAGE.encode())
        uncompressed = base64.b64encode(self.public_key.to_uncompressed_bytes()).decode()
        self.assertTrue(
            verify_secp256k1_signature(self.MESSAGE, signature.hex(), uncompressed)
        )

    def test_malformed_secp256k1_inputs_raise(self):
        signature = self.private_key.sign(self.MESSAGE.encode()).hex()
        with self.assertRaisesRegex(CryptographicFailureError, "decode signature"):
            verify_secp256k1_signature(self.MESSAGE, "zz" * 64, self.public_key.base64())
        spaced = " ".join(signature[i : i + 2] for i in range(0, len(signature), 2))
        with self.assertRaisesRegex(CryptographicFailureError, "decode signature"):
            verify_secp256k1_signature(self.MESSAGE, spaced, self.public_key.base64())
        with self.assertRaisesRegex(CryptographicFailureError, "decode signature"):
            verify_secp256k1_signature(
                self.MESSAGE, signature + "\n", self.public_key.base64()
            )
        with self.assertRaisesRegex(InputValidationError, "64 bytes, got 63"):
            verify_secp256k1_signature(
                self.MESSAGE, signature[:-2], self.public_key.base64()
            )
        with self.assertRaisesRegex(CryptographicFailureError, "decode public key"):
            verify_secp256k1_signature(self.MESSAGE, signature, "***")
        with self.assertRaisesRegex(InputValidationError, "33 or 65 bytes, got 32"):
            verify_secp256k1_signature(
                self.MESSAGE, signature, base64.b64encode(bytes(32)).decode()
            )

    def test_eth_wallet_signature(self):
        account = Account.create()
        signed = Account.sign_message(encode_defunct(text=self.MESSAGE), account.key)
        signature_hex = signed.signature.hex()
        self.assertTrue(
            verify_eth_wallet_signature(self.MESSAGE, signature_hex, account.address)
        )
        self.assertTrue(
            verify_eth_wallet_signature(
                self.MESSAGE, "0x0x" + normalize_hex_prefix(signature_hex),
                account.address.lower(),
            )
        )
        self.assertFalse(
            verify_eth_wallet_signature("other", signature_hex, account.address)
        )
        self.assertFalse(
            verify_eth_wallet_signature(
                self.MESSAGE, signature_hex, Account.create().address
            )
        )

    def test_malformed_eth_signature_raises(self):
        address = "0x" + "00" * 20
        with self.assertRaisesRegex(InputValidationError, "must be 65 bytes, got 2"):
            verify_eth_wallet_signature(self.MESSAGE, "0x1234", address)
        with self.assertRaisesRegex(InputValidationError, "must be 65 bytes, got 66"):
            verify_eth_wallet_signature(self.MESSAGE, "ab" * 66, address)
        with self.assertRaisesRegex(CryptographicFailureError, "decode signature"):
            verify_eth_wallet_signature(self.MESSAGE, "0x" + "g1" * 65, address)
        with self.assertRaisesRegex(CryptographicFailureError, "decode signature"):
            verify_eth_wallet_signature(self.MESSAGE, "ab " * 65, address)
        with self.assertRaisesRegex(CryptographicFailureError, "recovery failed"):
            verify_eth_wallet_signature(self.MESSAGE, "00" * 65, address)
