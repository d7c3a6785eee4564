# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Local preparation of account-creation signatures.

Creating an abstract account for a wallet is a three-step flow: prepare,
sign, create. The prepare step derives the salt for the wallet's credential,
predicts the address the account factory will instantiate, and returns that
address as the message the wallet must sign. The remote account API offers the
same step over HTTP (see :class:`xion_sdk.async_client.AAApiClient`); the
functions here compute it locally, given the account contract checksum and the
factory address.

The metadata returned with the message is echoed back to the create step, so
its keys follow the remote API.
"""

import time
import unittest
from dataclasses import dataclass
from typing import Any, Dict

from typing_extensions import assert_never

from .account_address import (
    DEFAULT_PREFIX,
    AccountAddress,
    Instantiate2Fn,
    SmartAccountAddressConfig,
    calculate_smart_account_address,
    fake_instantiate2,
)
from .authenticator import AuthenticatorKind
from .errors import InputValidationError
from .salt import calculate_eth_wallet_salt, calculate_secp256k1_salt

CREATE_ACCOUNT_ACTION = "create_abstraxion_account"


@dataclass(frozen=True)
class PrepareConfig:
    """Chain parameters needed to predict a new account's address.

    Attributes:
        checksum: Checksum of the account contract code, 64 hex characters.
        fee_granter: Bech32 address of the account factory, which is the creator.
        address_prefix: Prefix of the predicted address.
    """

    checksum: str
    fee_granter: str
    address_prefix: str = DEFAULT_PREFIX


@dataclass(frozen=True)
class PrepareResult:
    message_to_sign: str
    predicted_address: str
    salt: str
    metadata: Dict[str, Any]


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def _prepare(
    salt: str,
    wallet_type: AuthenticatorKind,
    credential_field: str,
    credential: str,
    config: PrepareConfig,
    instantiate2: Instantiate2Fn,
) -> PrepareResult:
    predicted_address = calculate_smart_account_address(
        SmartAccountAddressConfig(
            checksum=config.checksum,
            creator=config.fee_granter,
            salt=salt,
            prefix=config.address_prefix,
        ),
        instantiate2,
    )
    return PrepareResult(
        message_to_sign=predicted_address,
        predicted_address=predicted_address,
        salt=salt,
        metadata={
            "action": CREATE_ACCOUNT_ACTION,
            "wallet_type": wallet_type.value,
            credential_field: credential,
            "timestamp": _timestamp_ms(),
        },
    )


def prepare_eth_wallet_signature(
    address: str, config: PrepareConfig, instantiate2: Instantiate2Fn
) -> PrepareResult:
    """Prepare the message an Ethereum wallet signs to create its account.

    Raises:
        InputValidationError: If the address or any chain parameter is malformed.
    """
    salt = calculate_eth_wallet_salt(address)
    return _prepare(
        salt, AuthenticatorKind.ETH_WALLET, "address", address, config, instantiate2
    )


def prepare_secp256k1_signature(
    pubkey: str, config: PrepareConfig, instantiate2: Instantiate2Fn
) -> PrepareResult:
    """Prepare the message a Cosmos wallet signs to create its account.

    ``pubkey`` is salted exactly as given, so callers should normalize it to
    base64 first.
    """
    salt = calculate_secp256k1_salt(pubkey)
    return _prepare(
        salt, AuthenticatorKind.SECP256K1, "pubkey", pubkey, config, instantiate2
    )


def prepare_signature_message(
    kind: AuthenticatorKind,
    credential: str,
    config: PrepareConfig,
    instantiate2: Instantiate2Fn,
) -> PrepareResult:
    """Dispatch to the prepare function for ``kind``.

    Only wallet authenticators are created through this flow; other kinds
    raise :class:`InputValidationError`.
    """
    if not isinstance(kind, AuthenticatorKind):
        raise TypeError(f"Unsupported authenticator kind: {kind!r}")

    if kind is AuthenticatorKind.ETH_WALLET:
        return prepare_eth_wallet_signature(credential, config, instantiate2)
    elif kind is AuthenticatorKind.SECP256K1:
        return prepare_secp256k1_signature(credential, config, instantiate2)
    elif (
        kind is AuthenticatorKind.JWT
        or kind is AuthenticatorKind.PASSKEY
        or kind is AuthenticatorKind.ED25519
        or kind is AuthenticatorKind.SR25519
        or kind is AuthenticatorKind.ZK_EMAIL
    ):
        raise InputValidationError(
            f"Wallet type {kind.value} cannot be prepared for signature"
        )
    else:
        assert_never(kind)


class Test(unittest.TestCase):
    CONFIG = PrepareConfig(
        checksum="ab" * 32,
        fee_granter=str(AccountAddress(bytes(range(20)))),
    )
    ETH_ADDRESS = "0x" + "11" * 20

    def test_eth_wallet(self):
        result = prepare_eth_wallet_signature(
            self.ETH_ADDRESS, self.CONFIG, fake_instantiate2
        )
        self.assertEqual(result.salt, calculate_eth_wallet_salt(self.ETH_ADDRESS))
        self.assertEqual(result.message_to_sign, result.predicted_address)
        self.assertTrue(result.predicted_address.startswith("xion1"))
        self.assertEqual(result.metadata["action"], CREATE_ACCOUNT_ACTION)
        self.assertEqual(result.metadata["wallet_type"], "EthWallet")
        self.assertEqual(result.metadata["address"], self.ETH_ADDRESS)
        self.assertIsInstance(result.metadata["timestamp"], int)

    def test_secp256k1_and_dispatch(self):
        pubkey = "A" + "b" * 43
        direct = prepare_secp256k1_signature(pubkey, self.CONFIG, fake_instantiate2)
        dispatched = prepare_signature_message(
            AuthenticatorKind.SECP256K1, pubkey, self.CONFIG, fake_instantiate2
        )
        self.assertEqual(direct.predicted_address, dispatched.predicted_address)
        self.assertEqual(direct.metadata["pubkey"], pubkey)
        self.assertNotEqual(
            direct.predicted_address,
            prepare_signature_message(
                AuthenticatorKind.ETH_WALLET,
                self.ETH_ADDRESS,
                self.CONFIG,
                fake_instantiate2,
            ).predicted_address,
        )

    def test_prefix_is_applied(self):
        config = PrepareConfig(self.CONFIG.checksum, self.CONFIG.fee_granter, "cosmos")
        result = prepare_eth_wallet_signature(
            self.ETH_ADDRESS, config, fake_instantiate2
        )
        self.assertTrue(result.predicted_address.startswith("cosmos1"))

    def test_rejections(self):
        with self.assertRaises(InputValidationError):
            prepare_signature_message(
                AuthenticatorKind.JWT, "aud.sub", self.CONFIG, fake_instantiate2
            )
        with self.assertRaises(InputValidationError):
            prepare_eth_wallet_signature("0x1234", self.CONFIG, fake_instantiate2)
        bad_checksum = PrepareConfig("ab" * 31, self.CONFIG.fee_granter)
        with self.assertRaises(InputValidationError):
            prepare_eth_wallet_signature(
                self.ETH_ADDRESS, bad_checksum, fake_instantiate2
            )
        with self.assertRaises(TypeError):
            prepare_signature_message(
                "EthWallet", self.ETH_ADDRESS, self.CONFIG, fake_instantiate2  # type: ignore[arg-type]
            )
