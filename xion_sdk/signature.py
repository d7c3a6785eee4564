# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Lossless conversion of signatures and public keys between encodings.

Wallets hand back signatures as ``0x`` hex, bare hex, base64 or raw bytes,
and the account contract expects one specific form per algorithm. Every
``format_*`` function here produces a single canonical form, enforces the
exact byte length the algorithm requires, and is idempotent:
``format_x(format_x(v)) == format_x(v)``.

=====================  =====================  ===============================
Value                  Exact length           Canonical output
=====================  =====================  ===============================
Ethereum signature     65 bytes (r, s, v)     ``0x`` + 130 lowercase hex
secp256k1 signature    64 bytes (r, s)        128 lowercase hex, no prefix
secp256k1 public key   33 or 65 bytes         66 or 130 lowercase hex
=====================  =====================  ===============================

Input disambiguation:
    A string that, after removing ``0x`` prefixes, is entirely hex digits and
    has exactly the hex length of a valid value is read as hex. Otherwise it
    is read as standard base64. Any character outside the hex alphabet forces
    the base64 interpretation. Invalid characters are never stripped.

Examples:
    Canonicalizing wallet output::

        from xion_sdk.signature import format_eth_signature, format_secp256k1_signature

        format_eth_signature("0x0x" + "AB" * 65)        # "0x" + "ab" * 65
        format_secp256k1_signature(base64_signature)     # 128 hex characters
        hex_signature_to_base64(format_secp256k1_signature(sig))
"""

import base64
import unittest
from typing import Tuple, Union

from .encoding import decode_base64
from .errors import InputValidationError
from .hex_validation import (
    ensure_hex_prefix,
    is_valid_hex,
    normalize_hex_prefix,
    validate_and_decode_hex,
)

ETH_SIGNATURE_LENGTH = 65
SECP256K1_SIGNATURE_LENGTH = 64
SECP256K1_PUBKEY_LENGTHS: Tuple[int, ...] = (33, 65)


def _decode(
    value: Union[str, bytes], context: str, lengths: Tuple[int, ...]
) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        data = bytes(value)
    elif isinstance(value, str):
        if not value:
            raise InputValidationError(f"{context.capitalize()} cannot be empty")
        stripped = normalize_hex_prefix(value)
        if is_valid_hex(stripped) and len(stripped) in [n * 2 for n in lengths]:
            data = bytes.fromhex(stripped)
        else:
            data = decode_base64(value, context)
    else:
        raise InputValidationError(
            f"Invalid {context}: expected str or bytes, got {type(value).__name__}"
        )

    if len(data) not in lengths:
        expected = " or ".join(str(n) for n in lengths)
        raise InputValidationError(
            f"Invalid {context}: must be {expected} bytes, got {len(data)}"
        )
    return data


def format_eth_signature(signature: Union[str, bytes]) -> str:
    """Canonical ``0x``-prefixed hex for a 65-byte Ethereum signature.

    Raises:
        InputValidationError: If the value is empty, malformed, or not 65 bytes.
    """
    return "0x" + _decode(signature, "signature", (ETH_SIGNATURE_LENGTH,)).hex()


def format_secp256k1_signature(signature: Union[str, bytes]) -> str:
    """Canonical unprefixed hex for a 64-byte secp256k1 signature.

    Accepts hex (with or without ``0x``), standard base64, or raw bytes.
    """
    return _decode(signature, "signature", (SECP256K1_SIGNATURE_LENGTH,)).hex()


def format_secp256k1_pubkey(pubkey: Union[str, bytes]) -> str:
    """Canonical unprefixed hex for a 33- or 65-byte secp256k1 public key."""
    return _decode(pubkey, "pubkey", SECP256K1_PUBKEY_LENGTHS).hex()


def format_hex_message(message: str) -> str:
    """Hex message with exactly one ``0x`` prefix, as personal-sign wallets expect."""
    if not message:
        raise InputValidationError("Message cannot be empty")
    return ensure_hex_prefix(message)


def hex_signature_to_base64(signature_hex: str) -> str:
    """Standard base64 of a hex signature, e.g. for the account-creation API."""
    return base64.b64encode(
        validate_and_decode_hex(normalize_hex_prefix(signature_hex), "signature")
    ).decode()


def hex_pubkey_to_base64(pubkey_hex: str) -> str:
    """Standard base64 of a 33- or 65-byte hex public key."""
    stripped = normalize_hex_prefix(pubkey_hex)
    data = validate_and_decode_hex(stripped, "pubkey")
    if len(data) not in SECP256K1_PUBKEY_LENGTHS:
        raise InputValidationError(
            f"Invalid pubkey: must be 33 or 65 bytes, got {len(data)}"
        )
    return base64.b64encode(data).decode()


def utf8_to_hex_with_prefix(text: str) -> str:
    return "0x" + text.encode("utf-8").hex()


class Test(unittest.TestCase):
    ETH_SIG = "1b" * 65
    SECP_SIG = "2c" * 64
    PUBKEY = "02" + "3d" * 32

    def test_eth_signature(self):
        expected = "0x" + self.ETH_SIG
        self.assertEqual(format_eth_signature(self.ETH_SIG), expected)
        self.assertEqual(format_eth_signature("0x" + self.ETH_SIG.upper()), expected)
        self.assertEqual(format_eth_signature(bytes.fromhex(self.ETH_SIG)), expected)
        with self.assertRaisesRegex(InputValidationError, "65 bytes, got 64"):
            format_eth_signature("0x" + "1b" * 64)
        with self.assertRaisesRegex(InputValidationError, "cannot be empty"):
            format_eth_signature("")

    def test_secp256k1_signature_encodings(self):
        raw = bytes.fromhex(self.SECP_SIG)
        b64 = base64.b64encode(raw).decode()
        for value in [self.SECP_SIG, "0x" + self.SECP_SIG, b64, raw]:
            self.assertEqual(format_secp256k1_signature(value), self.SECP_SIG)
        with self.assertRaisesRegex(InputValidationError, "64 bytes, got 65"):
            format_secp256k1_signature(bytes(65))
        with self.assertRaisesRegex(InputValidationError, "signature"):
            format_secp256k1_signature("not*base64")

    def test_secp256k1_pubkey_encodings(self):
        b64 = base64.b64encode(bytes.fromhex(self.PUBKEY)).decode()
        self.assertEqual(format_secp256k1_pubkey(b64), self.PUBKEY)
        self.assertEqual(format_secp256k1_pubkey("0x" + self.PUBKEY), self.PUBKEY)
        uncompressed = "04" + "5e" * 64
        self.assertEqual(format_secp256k1_pubkey(uncompressed.upper()), uncompressed)
        with self.assertRaisesRegex(InputValidationError, "33 or 65 bytes, got 32"):
            format_secp256k1_pubkey(bytes(32))

    def test_hex_wins_at_exact_length(self):
        # 44 hex characters would also decode as base64; only 66/130 count as hex.
        all_hex_b64 = "0123456789abcdef0123456789abcdef0123456789ab"
        self.assertEqual(len(base64.b64decode(all_hex_b64)), 33)
        self.assertEqual(
            format_secp256k1_pubkey(all_hex_b64),
            base64.b64decode(all_hex_b64).hex(),
        )

    def test_idempotence(self):
        formatters = [
            (format_eth_signature, self.ETH_SIG),
            (format_secp256k1_signature, self.SECP_SIG),
            (format_secp256k1_pubkey, self.PUBKEY),
            (format_hex_message, "deadbeef"),
        ]
        for formatter, value in formatters:
            once = formatter(value)
            self.assertEqual(formatter(once), once)

    def test_repeated_prefixes(self):
        self.assertEqual(
            format_eth_signature("0x0x" + self.ETH_SIG),
            format_eth_signature("0x" + self.ETH_SIG),
        )
        self.assertEqual(
            format_secp256k1_signature("0x0x" + self.SECP_SIG),
            format_secp256k1_signature("0x" + self.SECP_SIG),
        )
        self.assertEqual(
            format_secp256k1_pubkey("0x0x" + self.PUBKEY),
            format_secp256k1_pubkey("0x" + self.PUBKEY),
        )
        self.assertEqual(format_hex_message("0x0xab"), format_hex_message("0xab"))
        self.assertEqual(
            hex_signature_to_base64("0x0x" + self.SECP_SIG),
            hex_signature_to_base64(self.SECP_SIG),
        )

    def test_base64_helpers(self):
        self.assertEqual(
            base64.b64decode(hex_signature_to_base64("0x" + self.SECP_SIG)),
            bytes.fromhex(self.SECP_SIG),
        )
        self.assertEqual(
            base64.b64decode(hex_pubkey_to_base64(self.PUBKEY)),
            bytes.fromhex(self.PUBKEY),
        )
        with self.assertRaisesRegex(InputValidationError, "33 or 65"):
            hex_pubkey_to_base64("02" * 10)
        self.assertEqual(utf8_to_hex_with_prefix("hi"), "0x6869")
