# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Command-line interface for the XION abstract-account helpers.

The commands cover the offline parts of account creation and login: deriving
a salt, asking the account API for the address a wallet will get, checking
wallet signatures and recognizing what kind of credential a string is.

Supported Commands:
- salt: Print the salt for a credential of the given authenticator kind
- address: Print the predicted abstract-account address of a wallet
- verify-secp256k1: Check a Cosmos wallet signature (raw or ADR-036)
- verify-eth: Check an Ethereum ``personal_sign`` signature
- detect: Print the authenticator kind a credential looks like

Examples:
    Salt of an Ethereum wallet::

        python -m xion_sdk.cli salt --kind EthWallet \
            --credential 0x742d35Cc6634C0532925a3b844Bc454e4438f44e

    Predicted address through the account API::

        XION_AA_API_URL=https://aa.xion-testnet-1.burnt.com \
        python -m xion_sdk.cli address --kind Secp256K1 --credential 02ab...

    Programmatic usage::

        from xion_sdk.cli import main

        await main(["detect", "--credential", "0x742d35Cc..."])

Environment Variables:
    XION_REST_URL, XION_INDEXER_URL, XION_AA_API_URL: override the URLs of the
    selected network.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import io
import sys
import unittest
import unittest.mock
from contextlib import redirect_stdout
from typing import List

from .account import Account
from .async_client import LOCAL, TESTNET, AAApiClient, ChainInfo
from .authenticator import AuthenticatorKind, detect_authenticator_type
from .errors import InputValidationError, XionSdkError
from .prepare import PrepareResult
from .salt import calculate_salt
from .signature_verification import (
    verify_eth_wallet_signature,
    verify_secp256k1_signature,
)

NETWORKS = {"testnet": TESTNET, "local": LOCAL}
COMMANDS = ["salt", "address", "verify-secp256k1", "verify-eth", "detect"]


async def predicted_address(
    chain: ChainInfo, kind: AuthenticatorKind, credential: str
) -> PrepareResult:
    """Run the account API's prepare step for a wallet credential.

    Raises:
        InputValidationError: If ``chain`` has no account API configured.
        ExternalServiceError: If the account API rejects the request.
    """
    if not chain.aa_api_url:
        raise InputValidationError(
            f"No account API configured for {chain.chain_id}; set XION_AA_API_URL"
        )
    client = AAApiClient(chain.aa_api_url)
    try:
        return await client.prepare(kind, credential)
    finally:
        await client.close()


def _require(parser: argparse.ArgumentParser, value, name: str):
    if value is None:
        parser.error(f"Missing required argument '--{name}'")


async def main(args: List[str]):
    """Parse ``args`` and run one command, printing its result to stdout."""
    parser = argparse.ArgumentParser(description="XION abstract-account CLI")
    parser.add_argument(
        "command", type=str, help="The command to execute", choices=COMMANDS
    )
    parser.add_argument(
        "--kind",
        help="Authenticator kind, e.g. EthWallet, Secp256K1, JWT",
        type=AuthenticatorKind.from_str,
    )
    parser.add_argument(
        "--credential",
        help="Ethereum address, public key or 'aud.sub' JWT identifier",
        type=str,
    )
    parser.add_argument("--message", help="The message that was signed", type=str)
    parser.add_argument("--signature", help="Signature as hex", type=str)
    parser.add_argument("--pubkey", help="secp256k1 public key as base64", type=str)
    parser.add_argument("--address", help="Expected Ethereum address", type=str)
    parser.add_argument(
        "--network", help="Network preset", choices=list(NETWORKS), default="testnet"
    )
    parsed_args = parser.parse_args(args)
    chain = NETWORKS[parsed_args.network].with_env()

    try:
        if parsed_args.command == "salt":
            _require(parser, parsed_args.kind, "kind")
            _require(parser, parsed_args.credential, "credential")
            print(calculate_salt(parsed_args.kind, parsed_args.credential))
        elif parsed_args.command == "address":
            _require(parser, parsed_args.kind, "kind")
            _require(parser, parsed_args.credential, "credential")
            prepared = await predicted_address(
                chain, parsed_args.kind, parsed_args.credential
            )
            print(prepared.predicted_address)
        elif parsed_args.command == "verify-secp256k1":
            _require(parser, parsed_args.message, "message")
            _require(parser, parsed_args.signature, "signature")
            _require(parser, parsed_args.pubkey, "pubkey")
            valid = verify_secp256k1_signature(
                parsed_args.message,
                parsed_args.signature,
                parsed_args.pubkey,
                chain.address_prefix,
            )
            print("valid" if valid else "invalid")
        elif parsed_args.command == "verify-eth":
            _require(parser, parsed_args.message, "message")
            _require(parser, parsed_args.signature, "signature")
            _require(parser, parsed_args.address, "address")
            valid = verify_eth_wallet_signature(
                parsed_args.message, parsed_args.signature, parsed_args.address
            )
            print("valid" if valid else "invalid")
        elif parsed_args.command == "detect":
            _require(parser, parsed_args.credential, "credential")
            kind = detect_authenticator_type(parsed_args.credential)
            print(kind.value if kind else "unknown")
    except XionSdkError as e:
        parser.error(str(e))


class Test(unittest.IsolatedAsyncioTestCase):
    async def run_cli(self, *args: str) -> str:
        out = io.StringIO()
        with redirect_stdout(out):
            await main(list(args))
        return out.getvalue().strip()

    async def test_salt(self):
        self.assertEqual(
            await self.run_cli("salt", "--kind", "jwt", "--credential", "aud.sub"),
            calculate_salt(AuthenticatorKind.JWT, "aud.sub"),
        )

    async def test_detect(self):
        self.assertEqual(
            await self.run_cli(
                "detect", "--credential", "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"
            ),
            "EthWallet",
        )
        self.assertEqual(
            await self.run_cli("detect", "--credential", "hello"), "unknown"
        )

    async def test_verify_secp256k1(self):
        account = Account.generate()
        signature = account.sign(b"hello").data().hex()
        result = await self.run_cli(
            "verify-secp256k1",
            "--message",
            "hello",
            "--signature",
            signature,
            "--pubkey",
            base64.b64encode(account.public_key().to_crypto_bytes()).decode(),
        )
        self.assertEqual(result, "valid")

    async def test_address_uses_account_api(self):
        patcher = unittest.mock.patch(
            "xion_sdk.async_client.AAApiClient.prepare",
            return_value=PrepareResult("msg", "xion1predicted", "00" * 32, {}),
        )
        prepare = patcher.start()
        self.addCleanup(patcher.stop)
        patcher = unittest.mock.patch(
            "xion_sdk.metadata.Metadata.get_xion_header_val",
            return_value="xion-python-sdk/test",
        )
        patcher.start()
        self.addCleanup(patcher.stop)

        with unittest.mock.patch.dict(
            "os.environ", {"XION_AA_API_URL": "https://aa.example"}
        ):
            result = await self.run_cli(
                "address", "--kind", "Secp256K1", "--credential", "02" + "ab" * 32
            )
        self.assertEqual(result, "xion1predicted")
        prepare.assert_called_once_with(AuthenticatorKind.SECP256K1, "02" + "ab" * 32)

    async def test_missing_argument_exits(self):
        with self.assertRaises(SystemExit), redirect_stdout(io.StringIO()):
            with unittest.mock.patch("sys.stderr", io.StringIO()):
                await main(["salt", "--kind", "EthWallet"])


def run():
    asyncio.run(main(sys.argv[1:]))


if __name__ == "__main__":
    run()
