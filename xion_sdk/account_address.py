# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Bech32 account addresses and smart-account address prediction.

Cosmos addresses are bech32 strings made of a human-readable prefix (``xion``,
``cosmos``, ...) and a payload of raw bytes: 20 bytes for a key-derived
account, 32 bytes for a contract such as an abstract account.

Key features:
- Strict parsing of bech32 addresses with an optional expected prefix
- Derivation of key-owned addresses as ``ripemd160(sha256(compressed pubkey))``
- Validation-gated prediction of abstract-account contract addresses

Address prediction:
    An abstract account is instantiated with the chain's instantiate2
    mechanism, so its address is a pure function of the account contract's
    code checksum, the creator (the account factory), a salt derived from the
    credential, and the address prefix. The hash itself is computed by an
    external primitive supplied by the caller (typically a binding to the
    chain's own implementation); this module validates every input before
    delegating so the primitive never sees malformed data.

Examples:
    Parsing and deriving addresses::

        from xion_sdk.account_address import AccountAddress

        address = AccountAddress.from_str("xion1...")
        address.prefix  # "xion"

        derived = AccountAddress.from_key(private_key.public_key())

    Predicting a smart-account address::

        from xion_sdk.account_address import (
            SmartAccountAddressConfig,
            calculate_smart_account_address,
        )

        config = SmartAccountAddressConfig(
            checksum=code_checksum_hex,
            creator="xion1...factory",
            salt=calculate_salt(AuthenticatorKind.SECP256K1, pubkey_b64),
            prefix="xion",
        )
        address = calculate_smart_account_address(config, instantiate2)
"""

from __future__ import annotations

import hashlib
import unittest
from dataclasses import dataclass, replace
from typing import Callable, Optional

import bech32
from Crypto.Hash import RIPEMD160

from .errors import InputValidationError
from .hex_validation import (
    decode_bech32,
    validate_address_prefix,
    validate_and_decode_hex,
    validate_bech32_address,
)
from .secp256k1_ecdsa import PrivateKey, PublicKey

DEFAULT_PREFIX = "xion"

# (checksum, creator, salt, prefix) -> bech32 contract address
Instantiate2Fn = Callable[[bytes, str, bytes, str], str]


class AccountAddress:
    """A bech32 address split into its prefix and raw bytes."""

    prefix: str
    address: bytes

    def __init__(self, address: bytes, prefix: str = DEFAULT_PREFIX):
        validate_address_prefix(prefix)
        self.address = address
        self.prefix = prefix

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccountAddress):
            return NotImplemented
        return self.address == other.address and self.prefix == other.prefix

    def __hash__(self) -> int:
        return hash((self.prefix, self.address))

    def __str__(self):
        return bech32.bech32_encode(
            self.prefix, bech32.convertbits(self.address, 8, 5)
        )

    def __repr__(self):
        return self.__str__()

    @staticmethod
    def from_str(
        address: str,
        context: str = "bech32 address",
        expected_prefix: Optional[str] = None,
    ) -> AccountAddress:
        """Parse a bech32 address.

        Raises:
            InputValidationError: If the address is malformed or carries an
                unexpected prefix.
        """
        validate_bech32_address(address, context, expected_prefix)
        prefix, data = decode_bech32(address, context)
        return AccountAddress(data, prefix)

    @staticmethod
    def from_key(key: PublicKey, prefix: str = DEFAULT_PREFIX) -> AccountAddress:
        """Derive the address owned by a secp256k1 key.

        The address bytes are ``ripemd160(sha256(compressed pubkey))``.
        """
        sha = hashlib.sha256(key.to_crypto_bytes()).digest()
        return AccountAddress(RIPEMD160.new(sha).digest(), prefix)

    def with_prefix(self, prefix: str) -> AccountAddress:
        """The same address bytes under a different human-readable prefix."""
        return AccountAddress(self.address, prefix)


@dataclass(frozen=True)
class SmartAccountAddressConfig:
    """Inputs to abstract-account address prediction.

    Attributes:
        checksum: SHA-256 checksum of the account contract code, 64 hex characters.
        creator: Bech32 address of the account creator (the factory).
        salt: 32-byte salt as 64 hex characters, see :mod:`xion_sdk.salt`.
        prefix: Human-readable prefix of the resulting address.
    """

    checksum: str
    creator: str
    salt: str
    prefix: str = DEFAULT_PREFIX


def predict_smart_account_address(
    checksum: str,
    creator: str,
    salt: str,
    prefix: str,
    instantiate2: Instantiate2Fn,
) -> str:
    """Validate the inputs and delegate to the instantiate2 primitive.

    Args:
        checksum: Contract code checksum, exactly 32 bytes of hex.
        creator: Bech32 creator address.
        salt: Exactly 32 bytes of hex.
        prefix: Address prefix, matching ``^[a-z][a-z0-9]*$``.
        instantiate2: The external address-hashing primitive.

    Returns:
        The predicted bech32 address under ``prefix``.

    Raises:
        InputValidationError: If any input is malformed.
    """
    checksum_bytes = validate_and_decode_hex(checksum, "checksum", exact_byte_length=32)
    salt_bytes = validate_and_decode_hex(salt, "salt", exact_byte_length=32)
    validate_bech32_address(creator, "creator address")
    validate_address_prefix(prefix)
    return instantiate2(checksum_bytes, creator, salt_bytes, prefix)


def calculate_smart_account_address(
    config: SmartAccountAddressConfig, instantiate2: Instantiate2Fn
) -> str:
    return predict_smart_account_address(
        config.checksum, config.creator, config.salt, config.prefix, instantiate2
    )


"""
Tests
"""


def fake_instantiate2(checksum: bytes, creator: str, salt: bytes, prefix: str) -> str:
    """Stand-in for the chain primitive: hashes its inputs into a 32-byte address."""
    _, creator_bytes = decode_bech32(creator)
    digest = hashlib.sha256(checksum + creator_bytes + salt).digest()
    return str(AccountAddress(digest, prefix))


class Test(unittest.TestCase):
    CREATOR = str(AccountAddress(bytes(range(20))))
    CONFIG = SmartAccountAddressConfig(
        checksum="ab" * 32,
        creator=CREATOR,
        salt=hashlib.sha256(b"salt").hexdigest(),
        prefix="xion",
    )

    def test_round_trip_and_prefix(self):
        address = AccountAddress.from_str(self.CREATOR)
        self.assertEqual(address.prefix, "xion")
        self.assertEqual(address.address, bytes(range(20)))
        self.assertEqual(str(address), self.CREATOR)
        cosmos = address.with_prefix("cosmos")
        self.assertTrue(str(cosmos).startswith("cosmos1"))
        self.assertNotEqual(cosmos, address)
        with self.assertRaisesRegex(InputValidationError, 'expected prefix "cosmos"'):
            AccountAddress.from_str(self.CREATOR, expected_prefix="cosmos")

    def test_from_key(self):
        public_key = PrivateKey.from_str(
            "0x306fa009600e27c09d2659145ce1785249360dd5fb992da01a578fe67ed607f4"
        ).public_key()
        address = AccountAddress.from_key(public_key)
        self.assertEqual(len(address.address), 20)
        self.assertEqual(
            address.address,
            RIPEMD160.new(
                hashlib.sha256(public_key.to_crypto_bytes()).digest()
            ).digest(),
        )
        self.assertTrue(str(address).startswith("xion1"))

    def test_address_is_deterministic(self):
        first = calculate_smart_account_address(self.CONFIG, fake_instantiate2)
        for _ in range(3):
            self.assertEqual(
                calculate_smart_account_address(self.CONFIG, fake_instantiate2), first
            )
        self.assertRegex(first, r"^xion1[a-z0-9]{38,59}$")

    def test_every_field_changes_the_address(self):
        base = calculate_smart_account_address(self.CONFIG, fake_instantiate2)
        variants = [
            replace(self.CONFIG, checksum="cd" * 32),
            replace(self.CONFIG, creator=str(AccountAddress(bytes(20)))),
            replace(self.CONFIG, salt="00" * 32),
        ]
        for variant in variants:
            self.assertNotEqual(
                calculate_smart_account_address(variant, fake_instantiate2), base
            )

        cosmos = calculate_smart_account_address(
            replace(self.CONFIG, prefix="cosmos"), fake_instantiate2
        )
        self.assertTrue(cosmos.startswith("cosmos1"))
        self.assertNotEqual(cosmos, base)

    def test_validation_gate(self):
        def never_called(*args):
            raise AssertionError("primitive called with invalid input")

        with self.assertRaisesRegex(InputValidationError, "checksum"):
            calculate_smart_account_address(
                replace(self.CONFIG, checksum="ab" * 31), never_called
            )
        with self.assertRaisesRegex(InputValidationError, "salt"):
            calculate_smart_account_address(
                replace(self.CONFIG, salt="zz" * 32), never_called
            )
        with self.assertRaisesRegex(InputValidationError, "creator address"):
            calculate_smart_account_address(
                replace(self.CONFIG, creator="not-an-address"), never_called
            )
        with self.assertRaisesRegex(InputValidationError, "address prefix"):
            calculate_smart_account_address(
                replace(self.CONFIG, prefix="Xion"), never_called
            )

    def test_primitive_receives_decoded_inputs(self):
        calls = []

        def recording(checksum, creator, salt, prefix):
            calls.append((checksum, creator, salt, prefix))
            return "xion1recorded"

        predict_smart_account_address(
            self.CONFIG.checksum,
            self.CONFIG.creator,
            self.CONFIG.salt,
            "xion",
            recording,
        )
        self.assertEqual(
            calls,
            [
                (
                    bytes.fromhex(self.CONFIG.checksum),
                    self.CONFIG.creator,
                    bytes.fromhex(self.CONFIG.salt),
                    "xion",
                )
            ],
        )
