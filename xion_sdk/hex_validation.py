# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Canonicalization and validation of hex and bech32 strings.

Every value that reaches a hash function or a signature check in this package
passes through one of the helpers below first. They never pad, truncate or
silently drop characters: a value is either accepted unchanged (modulo ``0x``
prefix handling) or rejected with an :class:`~xion_sdk.errors.InputValidationError`
whose message names the offending field.

Key Features:
- **Prefix normalization**: ``normalize_hex_prefix`` strips *every* leading
  ``0x``/``0X``, so ``"0x0xabcd"`` and ``"0xabcd"`` canonicalize identically
- **Length checks before decoding**: exact byte lengths are verified on the
  string form so errors report both byte and character counts
- **Bech32 validation**: checksum and optional human-readable prefix checks
  via the ``bech32`` reference implementation

Examples:
    Normalizing prefixes::

        from xion_sdk.hex_validation import ensure_hex_prefix, normalize_hex_prefix

        normalize_hex_prefix("0x0xABCD")  # "ABCD"
        ensure_hex_prefix("0x0xabcd")     # "0xabcd"

    Validating a 32-byte checksum::

        validate_hex_string(checksum, "checksum", exact_byte_length=32)

    Validating an address with a known prefix::

        validate_bech32_address(creator, "creator address", expected_prefix="xion")
"""

from __future__ import annotations

import re
import unittest
from typing import Optional

import bech32

from .errors import InputValidationError

HEX_PATTERN = re.compile(r"[0-9a-fA-F]+")
ETH_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
BECH32_ADDRESS_PATTERN = re.compile(r"^[a-z][a-z0-9]*1[a-z0-9]{38,}$")
ADDRESS_PREFIX_PATTERN = re.compile(r"^[a-z][a-z0-9]*$")

_NON_HEX = re.compile(r"[^0-9a-fA-F]")
_ETH_BODY = re.compile(r"^[0-9a-fA-F]{40}$")


def is_valid_hex(value: str) -> bool:
    """Return True if ``value`` is a non-empty string of hex digits (no prefix)."""
    return bool(HEX_PATTERN.fullmatch(value))


def normalize_hex_prefix(value: str) -> str:
    """Remove every leading ``0x``/``0X`` from ``value``.

    A single regex substitution only removes one prefix, so repeated prefixes
    such as ``"0x0x1234"`` are peeled off in a loop. The function is idempotent.

    Args:
        value: A hex string with zero or more ``0x`` prefixes.

    Returns:
        The hex digits without any prefix. Case is preserved.
    """
    normalized = value
    while normalized[:2].lower() == "0x":
        normalized = normalized[2:]
    return normalized


def ensure_hex_prefix(value: str) -> str:
    """Return ``value`` with exactly one ``0x`` prefix."""
    return f"0x{normalize_hex_prefix(value)}"


def _check_exact_length(value: str, context: str, exact_byte_length: int):
    expected_hex_length = exact_byte_length * 2
    if len(value) != expected_hex_length:
        raise InputValidationError(
            f"Invalid {context}: must be exactly {exact_byte_length} bytes "
            f"({expected_hex_length} hex characters), got {len(value) / 2:g} bytes "
            f"({len(value)} hex characters)."
        )


def validate_hex_string(
    value: str,
    context: str,
    allow_empty: bool = False,
    require_even_length: bool = True,
    exact_byte_length: Optional[int] = None,
):
    """Validate that ``value`` is an unprefixed hex string.

    Checks run in a fixed order (emptiness, character set, parity, exact
    length) so the first problem found is the one reported.

    Args:
        value: The string to validate. It must not carry a ``0x`` prefix; use
            :func:`normalize_hex_prefix` first when one may be present.
        context: Field name used in error messages, e.g. ``"checksum"``.
        allow_empty: Accept the empty string.
        require_even_length: Reject an odd number of hex digits.
        exact_byte_length: When set, require exactly this many bytes.

    Raises:
        InputValidationError: If any check fails.
    """
    if not isinstance(value, str):
        raise InputValidationError(f"Invalid {context}: expected a string")
    if not value:
        if allow_empty:
            return
        raise InputValidationError(f"Invalid {context}: cannot be empty")

    if not HEX_PATTERN.fullmatch(value):
        invalid_chars = _NON_HEX.findall(value)
        raise InputValidationError(
            f"Invalid {context}: contains invalid hex characters: "
            f"{', '.join(invalid_chars)}. Hex strings can only contain 0-9 and a-f."
        )

    if require_even_length and len(value) % 2 != 0:
        raise InputValidationError(
            f"Invalid {context}: hex string must have even length "
            f"(got {len(value)} characters)."
        )

    if exact_byte_length is not None:
        _check_exact_length(value, context, exact_byte_length)


def validate_and_decode_hex(
    value: str,
    context: str,
    allow_empty: bool = False,
    exact_byte_length: Optional[int] = None,
) -> bytes:
    """Validate ``value`` and return the decoded bytes.

    The length is checked on the string before decoding so that a wrong-length
    value reports its size rather than a generic decode failure.

    Raises:
        InputValidationError: If the value is empty, the wrong length, or not hex.
    """
    if not value:
        if allow_empty:
            return b""
        raise InputValidationError(f"Invalid {context}: cannot be empty")

    if exact_byte_length is not None:
        _check_exact_length(value, context, exact_byte_length)

    validate_hex_string(value, context)
    return bytes.fromhex(value)


def validate_ethereum_address(address: str):
    """Require a 20-byte hex address, with or without a single ``0x`` prefix.

    Raises:
        InputValidationError: If the address is empty or not 40 hex characters.
    """
    if not address:
        raise InputValidationError("Invalid Ethereum address: cannot be empty")

    normalized = address[2:] if address[:2].lower() == "0x" else address
    if not _ETH_BODY.match(normalized):
        raise InputValidationError(
            "Invalid Ethereum address: expected 40 hex characters (20 bytes), "
            f'got "{normalized[:20]}..."'
        )


def decode_bech32(address: str, context: str = "bech32 address") -> tuple[str, bytes]:
    """Decode a bech32 address into its human-readable prefix and raw bytes.

    Raises:
        InputValidationError: If the checksum, character set or padding is invalid.
    """
    if not address:
        raise InputValidationError(f"Invalid {context}: cannot be empty")
    hrp, data = bech32.bech32_decode(address)
    if hrp is None or data is None:
        raise InputValidationError(
            f'Invalid {context}: must be valid bech32 format (e.g., "xion1..."), '
            f'got "{address[:20]}...".'
        )
    decoded = bech32.convertbits(data, 5, 8, False)
    if decoded is None:
        raise InputValidationError(
            f"Invalid {context}: bech32 data has invalid padding, "
            f'got "{address[:20]}...".'
        )
    return hrp, bytes(decoded)


def validate_bech32_address(
    address: str,
    context: str = "bech32 address",
    expected_prefix: Optional[str] = None,
):
    """Validate a bech32 address and, optionally, its human-readable prefix.

    Args:
        address: The address to check, e.g. ``"xion1..."``.
        context: Field name used in error messages.
        expected_prefix: When set, the decoded prefix must equal this value.

    Raises:
        InputValidationError: If the address does not decode or has the wrong prefix.
    """
    prefix, _ = decode_bech32(address, context)
    if expected_prefix is not None and prefix != expected_prefix:
        raise InputValidationError(
            f'Invalid {context}: expected prefix "{expected_prefix}", got "{prefix}"'
        )


def validate_address_prefix(prefix: str, context: str = "address prefix"):
    """Require a bech32 human-readable prefix of the form ``^[a-z][a-z0-9]*$``."""
    if not prefix:
        raise InputValidationError(f"Invalid {context}: cannot be empty")
    if not ADDRESS_PREFIX_PATTERN.match(prefix):
        raise InputValidationError(
            f"Invalid {context}: must start with lowercase letter and contain only "
            f'lowercase alphanumeric characters (got "{prefix}")'
        )


class Test(unittest.TestCase):
    XION_ADDRESS = bech32.bech32_encode("xion", bech32.convertbits(bytes(20), 8, 5))

    def test_normalize_hex_prefix(self):
        self.assertEqual(normalize_hex_prefix("0xabcd"), "abcd")
        self.assertEqual(normalize_hex_prefix("0X0x0XABcd"), "ABcd")
        self.assertEqual(normalize_hex_prefix("abcd"), "abcd")
        self.assertEqual(normalize_hex_prefix(""), "")
        once = normalize_hex_prefix("0x0x12")
        self.assertEqual(normalize_hex_prefix(once), once)

    def test_ensure_hex_prefix(self):
        self.assertEqual(ensure_hex_prefix("abcd"), "0xabcd")
        self.assertEqual(ensure_hex_prefix("0x0xabcd"), "0xabcd")
        self.assertEqual(ensure_hex_prefix(ensure_hex_prefix("ab")), "0xab")

    def test_validate_hex_string_invalid_characters(self):
        with self.assertRaises(InputValidationError) as cm:
            validate_hex_string("zz12g", "salt")
        message = str(cm.exception)
        self.assertIn("Invalid salt", message)
        self.assertIn("z, z, g", message)

    def test_is_valid_hex_rejects_whitespace(self):
        self.assertTrue(is_valid_hex("deadBEEF"))
        self.assertFalse(is_valid_hex("dead\n"))
        self.assertFalse(is_valid_hex("de ad"))
        self.assertFalse(is_valid_hex(""))

    def test_validate_hex_string_lengths(self):
        validate_hex_string("ab" * 32, "checksum", exact_byte_length=32)
        with self.assertRaisesRegex(InputValidationError, "even length"):
            validate_hex_string("abc", "checksum")
        validate_hex_string("abc", "checksum", require_even_length=False)
        with self.assertRaisesRegex(
            InputValidationError, r"checksum: must be exactly 32 bytes \(64 hex"
        ):
            validate_hex_string("ab" * 31, "checksum", exact_byte_length=32)

    def test_validate_hex_string_empty(self):
        with self.assertRaisesRegex(InputValidationError, "signature: cannot be empty"):
            validate_hex_string("", "signature")
        validate_hex_string("", "signature", allow_empty=True)

    def test_validate_and_decode_hex(self):
        self.assertEqual(validate_and_decode_hex("00ff", "data"), b"\x00\xff")
        self.assertEqual(validate_and_decode_hex("", "data", allow_empty=True), b"")
        with self.assertRaisesRegex(InputValidationError, "got 1 bytes"):
            validate_and_decode_hex("00", "salt", exact_byte_length=32)
        with self.assertRaisesRegex(InputValidationError, "invalid hex characters"):
            validate_and_decode_hex("0g", "salt")

    def test_validate_ethereum_address(self):
        validate_ethereum_address("0x" + "aB" * 20)
        validate_ethereum_address("ab" * 20)
        with self.assertRaisesRegex(InputValidationError, "40 hex characters"):
            validate_ethereum_address("0x1234")
        with self.assertRaisesRegex(InputValidationError, "cannot be empty"):
            validate_ethereum_address("")

    def test_validate_bech32_address(self):
        validate_bech32_address(self.XION_ADDRESS)
        validate_bech32_address(self.XION_ADDRESS, expected_prefix="xion")
        with self.assertRaisesRegex(InputValidationError, 'expected prefix "cosmos"'):
            validate_bech32_address(
                self.XION_ADDRESS, "creator", expected_prefix="cosmos"
            )
        last = "p" if self.XION_ADDRESS[-1] == "q" else "q"
        with self.assertRaisesRegex(InputValidationError, "Invalid creator"):
            validate_bech32_address(self.XION_ADDRESS[:-1] + last, "creator")
        with self.assertRaisesRegex(InputValidationError, "cannot be empty"):
            validate_bech32_address("")

    def test_decode_bech32(self):
        prefix, data = decode_bech32(self.XION_ADDRESS)
        self.assertEqual(prefix, "xion")
        self.assertEqual(data, bytes(20))

    def test_validate_address_prefix(self):
        validate_address_prefix("xion")
        validate_address_prefix("cosmos2")
        for bad in ["", "Xion", "1xion", "xi-on"]:
            with self.assertRaises(InputValidationError):
                validate_address_prefix(bad)
