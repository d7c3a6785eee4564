# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Deterministic salt derivation for abstract-account addresses.

The salt feeds the instantiate2 address computation, so it must be
bit-identical to what the remote account-creation service and the on-chain
account contract compute for the same credential. A single differing byte
means the predicted address no longer matches the deployed contract and the
account becomes undiscoverable.

Formulas (all results are 32 bytes, rendered as 64 lowercase hex characters):

============  ================================================================
Kind          Salt
============  ================================================================
EthWallet     ``sha256(bytes.fromhex(lowercase(address without 0x)))``
Secp256K1     ``sha256(utf8(pubkey string))``, the *string* is hashed, not the
              decoded key bytes
JWT           ``sha256(utf8(aud + "." + sub))``
Passkey,      Same as Secp256K1, applied to the credential string. This is a
Ed25519,      provisional fallback shared with the account-creation service
Sr25519,      and must not be changed independently of it.
ZKEmail
============  ================================================================

Examples:
    Salts for each kind::

        from xion_sdk.authenticator import AuthenticatorKind
        from xion_sdk.salt import calculate_salt

        calculate_salt(AuthenticatorKind.ETH_WALLET, "0x" + "00" * 20)
        calculate_salt(AuthenticatorKind.SECP256K1, "AtQ6...")  # base64 pubkey
        calculate_salt(AuthenticatorKind.JWT, "my-audience.user-123")

Note:
    The secp256k1 formula hashes exactly the string it is given. Callers
    holding a key in hex must pass it through
    :func:`~xion_sdk.authenticator.normalize_secp256k1_public_key` first.
    All functions here are pure, so results may be memoized freely.
"""

import hashlib
import unittest

from typing_extensions import assert_never

from .authenticator import AuthenticatorKind
from .errors import InputValidationError
from .hex_validation import normalize_hex_prefix, validate_ethereum_address


def _require_string(value: str, context: str):
    if not isinstance(value, str) or not value:
        raise InputValidationError(f"Invalid {context}: must be a non-empty string")


def calculate_eth_wallet_salt(address: str) -> str:
    """Salt for an Ethereum wallet authenticator.

    Every leading ``0x`` is removed and the hex is lowercased before decoding,
    so checksummed and lowercase forms of the same address yield the same salt.

    Args:
        address: A 20-byte Ethereum address, with or without ``0x``.

    Returns:
        The salt as 64 lowercase hex characters.

    Raises:
        InputValidationError: If the address is empty or not 40 hex characters.
    """
    _require_string(address, "Ethereum address")
    address_hex = normalize_hex_prefix(address).lower()
    validate_ethereum_address(address_hex)
    return hashlib.sha256(bytes.fromhex(address_hex)).hexdigest()


def calculate_secp256k1_salt(pubkey: str) -> str:
    """Salt for a secp256k1 authenticator: the SHA-256 of the UTF-8 pubkey string."""
    _require_string(pubkey, "public key")
    return hashlib.sha256(pubkey.encode("utf-8")).hexdigest()


def calculate_jwt_salt(aud: str, sub: str) -> str:
    """Salt for a JWT authenticator identified by its audience and subject."""
    _require_string(aud, "JWT aud")
    _require_string(sub, "JWT sub")
    return hashlib.sha256(f"{aud}.{sub}".encode("utf-8")).hexdigest()


def calculate_salt(kind: AuthenticatorKind, credential: str) -> str:
    """Salt for any authenticator kind.

    For :attr:`AuthenticatorKind.JWT` the credential is the already-joined
    ``"aud.sub"`` identifier.

    Raises:
        InputValidationError: If the credential is empty or malformed for its kind.
        TypeError: If ``kind`` is not an :class:`AuthenticatorKind`.
    """
    if not isinstance(kind, AuthenticatorKind):
        raise TypeError(f"Unsupported authenticator kind: {kind!r}")

    if kind is AuthenticatorKind.ETH_WALLET:
        return calculate_eth_wallet_salt(credential)
    elif kind is AuthenticatorKind.SECP256K1:
        return calculate_secp256k1_salt(credential)
    elif kind is AuthenticatorKind.JWT:
        _require_string(credential, "JWT identifier")
        return hashlib.sha256(credential.encode("utf-8")).hexdigest()
    elif (
        kind is AuthenticatorKind.PASSKEY
        or kind is AuthenticatorKind.ED25519
        or kind is AuthenticatorKind.SR25519
        or kind is AuthenticatorKind.ZK_EMAIL
    ):
        return calculate_secp256k1_salt(credential)
    else:
        assert_never(kind)


class Test(unittest.TestCase):
    def test_secp256k1_salt_matches_sha256(self):
        self.assertEqual(
            calculate_secp256k1_salt("abc"),
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad",
        )

    def test_eth_wallet_salt_of_zero_address(self):
        expected = hashlib.sha256(bytes(20)).hexdigest()
        self.assertEqual(calculate_eth_wallet_salt("0x" + "00" * 20), expected)

    def test_eth_wallet_salt_is_case_and_prefix_insensitive(self):
        lower = calculate_eth_wallet_salt("0x" + "ab" * 20)
        self.assertEqual(calculate_eth_wallet_salt("0x" + "AB" * 20), lower)
        self.assertEqual(calculate_eth_wallet_salt("0x0x" + "ab" * 20), lower)
        self.assertEqual(calculate_eth_wallet_salt("ab" * 20), lower)

    def test_eth_wallet_salt_rejects_bad_input(self):
        with self.assertRaises(InputValidationError):
            calculate_eth_wallet_salt("0x1234")
        with self.assertRaises(InputValidationError):
            calculate_eth_wallet_salt("")

    def test_jwt_salt(self):
        expected = hashlib.sha256(b"audience.subject").hexdigest()
        self.assertEqual(calculate_jwt_salt("audience", "subject"), expected)
        self.assertEqual(
            calculate_salt(AuthenticatorKind.JWT, "audience.subject"), expected
        )
        with self.assertRaises(InputValidationError):
            calculate_jwt_salt("", "subject")

    def test_determinism_for_every_kind(self):
        credentials = {
            AuthenticatorKind.ETH_WALLET: "0x" + "12" * 20,
            AuthenticatorKind.SECP256K1: "A" + "b" * 43,
            AuthenticatorKind.ED25519: "ed-key",
            AuthenticatorKind.SR25519: "sr-key",
            AuthenticatorKind.JWT: "aud.sub",
            AuthenticatorKind.PASSKEY: "passkey-credential",
            AuthenticatorKind.ZK_EMAIL: "zk-email-credential",
        }
        for kind in AuthenticatorKind:
            first = calculate_salt(kind, credentials[kind])
            self.assertEqual(len(first), 64)
            self.assertEqual(first, first.lower())
            for _ in range(3):
                self.assertEqual(calculate_salt(kind, credentials[kind]), first)

    def test_provisional_kinds_use_string_hash(self):
        for kind in [
            AuthenticatorKind.PASSKEY,
            AuthenticatorKind.ED25519,
            AuthenticatorKind.SR25519,
            AuthenticatorKind.ZK_EMAIL,
        ]:
            self.assertEqual(
                calculate_salt(kind, "credential"),
                calculate_secp256k1_salt("credential"),
            )

    def test_unknown_kind_is_a_programming_error(self):
        with self.assertRaises(TypeError):
            calculate_salt("EthWallet", "0x" + "00" * 20)  # type: ignore[arg-type]

    def test_empty_credentials_rejected(self):
        for kind in AuthenticatorKind:
            with self.assertRaises(InputValidationError):
                calculate_salt(kind, "")
