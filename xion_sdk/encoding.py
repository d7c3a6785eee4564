# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Byte encoding helpers shared by the signature formatter and the signers.

WebAuthn and JWT payloads travel as url-safe, unpadded base64 while the chain
and the account-creation API expect standard padded base64. These helpers
convert between the two and provide a strict base64 decoder that rejects
malformed input instead of skipping characters.
"""

import base64
import binascii
import unittest
from typing import Optional

from .errors import InputValidationError


def encode_hex(data: bytes) -> str:
    """Lowercase hex without a prefix."""
    return bytes(data).hex()


def get_human_readable_pubkey(pubkey: Optional[bytes]) -> str:
    """Standard base64 rendering of a public key, or ``""`` when absent."""
    if not pubkey:
        return ""
    return base64.b64encode(bytes(pubkey)).decode()


def convert_to_standard_base64(url_safe_base64: str) -> str:
    value = url_safe_base64.replace("-", "+").replace("_", "/")
    while len(value) % 4 != 0:
        value += "="
    return value


def to_url_safe_base64(value: str) -> str:
    return value.replace("+", "-").replace("/", "_").rstrip("=")


def get_bytes_from_url_safe_base64(url_safe_base64: str) -> bytes:
    return decode_base64(convert_to_standard_base64(url_safe_base64), "base64url")


def decode_base64(value: str, context: str) -> bytes:
    """Decode standard base64, rejecting any character outside the alphabet.

    Raises:
        InputValidationError: If ``value`` is empty or not valid base64.
    """
    if not value:
        raise InputValidationError(f"Invalid {context}: cannot be empty")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InputValidationError(f"Invalid {context}: not valid base64 ({e})")


class Test(unittest.TestCase):
    def test_encode_hex(self):
        self.assertEqual(encode_hex(b"\x00\x0f\xff"), "000fff")

    def test_human_readable_pubkey(self):
        self.assertEqual(get_human_readable_pubkey(None), "")
        self.assertEqual(get_human_readable_pubkey(b"\x01\x02"), "AQI=")

    def test_url_safe_conversion(self):
        standard = base64.b64encode(b"\xfb\xff\xfe").decode()
        url_safe = to_url_safe_base64(standard)
        self.assertEqual(url_safe, "-__-")
        self.assertEqual(convert_to_standard_base64(url_safe), standard)
        self.assertEqual(convert_to_standard_base64("YQ"), "YQ==")
        self.assertEqual(get_bytes_from_url_safe_base64("YQ"), b"a")

    def test_decode_base64(self):
        self.assertEqual(decode_base64("aGk=", "payload"), b"hi")
        with self.assertRaisesRegex(InputValidationError, "Invalid payload"):
            decode_base64("a$b=", "payload")
        with self.assertRaisesRegex(InputValidationError, "cannot be empty"):
            decode_base64("", "payload")
