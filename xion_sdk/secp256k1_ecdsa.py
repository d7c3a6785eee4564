# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
secp256k1 ECDSA keys and signatures in the Cosmos SDK convention.

Cosmos chains hash every message with SHA-256 before signing, carry public keys
in their 33-byte compressed form, and encode signatures as the raw 64-byte
concatenation ``r || s`` with no recovery byte. This module wraps the ``ecdsa``
library with exactly those conventions so the same objects can sign ordinary
transactions, back a :class:`~xion_sdk.direct_signer.DirectSigner`, and verify
authenticator signatures.

Cryptographic Properties:
- Curve: secp256k1
- Hash Function: SHA-256
- Key Sizes: 32-byte private keys; 33-byte compressed or 65-byte uncompressed
  public keys
- Signature Size: 64 bytes (r, s), normalized to low-S

Examples:
    Signing and verifying::

        from xion_sdk.secp256k1_ecdsa import PrivateKey

        private_key = PrivateKey.random()
        signature = private_key.sign(b"hello")
        assert private_key.public_key().verify(b"hello", signature)

    Moving keys between encodings::

        public_key = private_key.public_key()
        public_key.hex()       # 66 hex characters, compressed
        public_key.base64()    # the form used by the account-creation API
        PublicKey.from_base64(public_key.base64()) == public_key

Note:
    Signatures are deterministic (RFC 6979) and normalized so that
    ``s <= n / 2``, matching what the chain accepts.
"""

from __future__ import annotations

import base64
import hashlib
import unittest

from ecdsa import (
    SECP256k1,
    BadSignatureError,
    MalformedPointError,
    SigningKey,
    VerifyingKey,
    util,
)

from .errors import CryptographicFailureError, InputValidationError
from .hex_validation import normalize_hex_prefix, validate_and_decode_hex


class PrivateKey:
    """A secp256k1 private key that signs with SHA-256.

    Attributes:
        LENGTH: The byte length of secp256k1 private keys (32)
        key: The underlying ECDSA signing key object
    """

    LENGTH: int = 32

    key: SigningKey

    def __init__(self, key: SigningKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PrivateKey):
            return NotImplemented
        return self.key.to_string() == other.key.to_string()

    def __str__(self):
        return self.hex()

    @staticmethod
    def from_hex(value: str | bytes) -> PrivateKey:
        """Create a private key from hex (with or without ``0x``) or raw bytes.

        Raises:
            InputValidationError: If the key is not exactly 32 bytes.
        """
        if isinstance(value, bytes):
            key_bytes = value
            if len(key_bytes) != PrivateKey.LENGTH:
                raise InputValidationError(
                    f"Invalid private key: must be exactly {PrivateKey.LENGTH} bytes, "
                    f"got {len(key_bytes)}"
                )
        else:
            key_bytes = validate_and_decode_hex(
                normalize_hex_prefix(value),
                "private key",
                exact_byte_length=PrivateKey.LENGTH,
            )
        return PrivateKey(SigningKey.from_string(key_bytes, SECP256k1, hashlib.sha256))

    @staticmethod
    def from_str(value: str) -> PrivateKey:
        return PrivateKey.from_hex(value)

    def hex(self) -> str:
        return f"0x{self.key.to_string().hex()}"

    def public_key(self) -> PublicKey:
        return PublicKey(self.key.verifying_key)

    @staticmethod
    def random() -> PrivateKey:
        return PrivateKey(SigningKey.generate(curve=SECP256k1, hashfunc=hashlib.sha256))

    def sign(self, data: bytes) -> Signature:
        """Sign ``sha256(data)`` deterministically and normalize to low-S.

        Args:
            data: The message bytes. They are hashed with SHA-256 before signing.

        Returns:
            A 64-byte ``r || s`` signature.
        """
        sig = self.key.sign_deterministic(data, hashfunc=hashlib.sha256)
        n = SECP256k1.generator.order()
        r, s = util.sigdecode_string(sig, n)
        # The signature is valid for both s and -s, normalization ensures that only s < n // 2 is valid
        if s > (n // 2):
            mod_s = (s * -1) % n
            sig = util.sigencode_string(r, mod_s, n)
        return Signature(sig)


class PublicKey:
    """A secp256k1 public key.

    Accepts both the 33-byte compressed and the 65-byte uncompressed SEC1
    encodings; renders the compressed form, which is what Cosmos chains and
    the account-creation API use.

    Attributes:
        COMPRESSED_LENGTH: Byte length of a compressed key (33)
        UNCOMPRESSED_LENGTH: Byte length of an uncompressed key (65)
        key: The underlying ECDSA verification key object
    """

    COMPRESSED_LENGTH: int = 33
    UNCOMPRESSED_LENGTH: int = 65

    key: VerifyingKey

    def __init__(self, key: VerifyingKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self.to_crypto_bytes() == other.to_crypto_bytes()

    def __str__(self) -> str:
        return self.hex()

    @staticmethod
    def from_bytes(value: bytes) -> PublicKey:
        """Parse an SEC1 compressed (33 byte) or uncompressed (65 byte) key.

        Raises:
            InputValidationError: If the length is neither 33 nor 65.
            CryptographicFailureError: If the bytes are not a point on the curve.
        """
        if len(value) not in (PublicKey.COMPRESSED_LENGTH, PublicKey.UNCOMPRESSED_LENGTH):
            raise InputValidationError(
                f"Public key must be 33 or 65 bytes, got {len(value)}"
            )
        try:
            key = VerifyingKey.from_string(value, SECP256k1, hashlib.sha256)
        except (MalformedPointError, ValueError) as e:
            raise CryptographicFailureError(f"Failed to decode public key: {e}")
        return PublicKey(key)

    @staticmethod
    def from_str(value: str) -> PublicKey:
        """Parse a hex encoded key, with or without ``0x``."""
        return PublicKey.from_bytes(
            validate_and_decode_hex(normalize_hex_prefix(value), "public key")
        )

    @staticmethod
    def from_base64(value: str) -> PublicKey:
        try:
            data = base64.b64decode(value, validate=True)
        except ValueError as e:
            raise InputValidationError(f"Invalid public key: not valid base64 ({e})")
        return PublicKey.from_bytes(data)

    def to_crypto_bytes(self) -> bytes:
        """The 33-byte compressed encoding."""
        return self.key.to_string("compressed")

    def to_uncompressed_bytes(self) -> bytes:
        return self.key.to_string("uncompressed")

    def hex(self) -> str:
        return self.to_crypto_bytes().hex()

    def base64(self) -> str:
        return base64.b64encode(self.to_crypto_bytes()).decode()

    def verify(self, data: bytes, signature: Signature) -> bool:
        """Check a signature over ``sha256(data)``.

        Returns False when the signature does not match; a signature of the
        wrong size is rejected by :class:`Signature` before reaching here.
        """
        return self.verify_digest(hashlib.sha256(data).digest(), signature)

    def verify_digest(self, digest: bytes, signature: Signature) -> bool:
        """Check a signature over an already computed 32-byte digest."""
        try:
            self.key.verify_digest(signature.data(), digest)
        except BadSignatureError:
            return False
        return True


class Signature:
    """A 64-byte ``r || s`` secp256k1 signature."""

    LENGTH: int = 64

    signature: bytes

    def __init__(self, signature: bytes):
        if len(signature) != Signature.LENGTH:
            raise InputValidationError(
                f"Signature must be {Signature.LENGTH} bytes, got {len(signature)}"
            )
        self.signature = signature

    def __eq__(self, other: object):
        if not isinstance(other, Signature):
            return NotImplemented
        return self.signature == other.signature

    def __str__(self) -> str:
        return self.hex()

    def hex(self) -> str:
        return self.signature.hex()

    def base64(self) -> str:
        return base64.b64encode(self.signature).decode()

    @staticmethod
    def from_str(value: str) -> Signature:
        return Signature(
            validate_and_decode_hex(normalize_hex_prefix(value), "signature")
        )

    def data(self) -> bytes:
        return self.signature


class Test(unittest.TestCase):
    PRIVATE_KEY = "0x306fa009600e27c09d2659145ce1785249360dd5fb992da01a578fe67ed607f4"

    def test_private_key_from_str(self):
        private_key_hex = PrivateKey.from_str(self.PRIVATE_KEY)
        private_key_bytes = PrivateKey.from_hex(bytes.fromhex(self.PRIVATE_KEY[2:]))
        self.assertEqual(private_key_hex, private_key_bytes)
        self.assertEqual(private_key_hex.hex(), self.PRIVATE_KEY)

    def test_private_key_length(self):
        with self.assertRaisesRegex(InputValidationError, "private key"):
            PrivateKey.from_str("0x1234")
        with self.assertRaises(InputValidationError):
            PrivateKey.from_hex(b"\x01" * 31)

    def test_sign_and_verify(self):
        in_value = b"test_message"

        private_key = PrivateKey.random()
        public_key = private_key.public_key()

        signature = private_key.sign(in_value)
        self.assertTrue(public_key.verify(in_value, signature))
        self.assertTrue(
            public_key.verify_digest(hashlib.sha256(in_value).digest(), signature)
        )
        self.assertFalse(public_key.verify(b"other_message", signature))
        self.assertFalse(PrivateKey.random().public_key().verify(in_value, signature))

    def test_signature_is_low_s_and_deterministic(self):
        private_key = PrivateKey.from_str(self.PRIVATE_KEY)
        n = SECP256k1.generator.order()
        for message in [b"a", b"b", b"Hello world", b"another_message"]:
            signature = private_key.sign(message)
            self.assertEqual(signature, private_key.sign(message))
            _, s = util.sigdecode_string(signature.data(), n)
            self.assertLessEqual(s, n // 2)

    def test_public_key_encodings(self):
        public_key = PrivateKey.from_str(self.PRIVATE_KEY).public_key()
        compressed = public_key.to_crypto_bytes()
        self.assertEqual(len(compressed), 33)
        self.assertIn(compressed[0], (2, 3))
        self.assertEqual(len(public_key.to_uncompressed_bytes()), 65)
        self.assertEqual(PublicKey.from_str(public_key.hex()), public_key)
        self.assertEqual(PublicKey.from_str("0x" + public_key.hex()), public_key)
        self.assertEqual(
            PublicKey.from_bytes(public_key.to_uncompressed_bytes()), public_key
        )
        self.assertEqual(PublicKey.from_base64(public_key.base64()), public_key)

    def test_public_key_rejects_bad_lengths(self):
        with self.assertRaisesRegex(InputValidationError, "33 or 65 bytes, got 32"):
            PublicKey.from_bytes(b"\x02" * 32)

    def test_signature_length(self):
        with self.assertRaisesRegex(InputValidationError, "64 bytes, got 65"):
            Signature(b"\x00" * 65)
        signature = Signature(b"\x01" * 64)
        self.assertEqual(Signature.from_str("0x" + signature.hex()), signature)
