# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
XION Python SDK - signing and account helpers for XION abstract accounts.

On XION every user account can be a smart contract (an "abstract account")
that accepts transactions authorized by any of its registered authenticators:
a Cosmos secp256k1 key, an Ethereum wallet, a JWT login, a WebAuthn passkey or
a zk-email proof. This package derives and predicts those accounts' addresses,
formats and verifies wallet signatures, and signs transactions on their behalf.

Core Features:
- **Validation**: Hex, bech32 and Ethereum address checks with typed errors
- **Salts and Addresses**: Deterministic salts per authenticator and
  instantiate2 address prediction
- **Signatures**: Formatting wallet output for the chain and verifying
  secp256k1 (raw and ADR-036) and Ethereum ``personal_sign`` signatures
- **Signers**: One strategy per authenticator kind, bound to an abstract
  account before use
- **Transaction Pipeline**: Sign doc construction, authenticator-routed
  signatures, simulation and broadcast
- **Account API**: Remote prepare and create steps for wallet accounts

Quick Start:
    Signing for an abstract account with a local key::

        import asyncio
        from xion_sdk.aa_client import AAClient
        from xion_sdk.account import Account
        from xion_sdk.async_client import TESTNET, IndexerClient, RestClient
        from xion_sdk.direct_signer import DirectSigner
        from xion_sdk.messages import MsgSend
        from xion_sdk.transactions import coins

        async def main():
            rest_client = RestClient(TESTNET.rest_url)
            indexer = IndexerClient(TESTNET.indexer_url)
            key = Account.load_key("...")
            signer = DirectSigner.from_account(key, authenticator_id=0, indexer=indexer)

            client = AAClient(rest_client, signer.bind("xion1abstract..."))
            result = await client.sign_and_broadcast(
                "xion1abstract...",
                [MsgSend("xion1abstract...", "xion1recipient...", coins(1000, "uxion"))],
                "auto",
            )
            print(result["txhash"])
            await rest_client.close()

        asyncio.run(main())

    Predicting an account address::

        from xion_sdk.account_address import (
            SmartAccountAddressConfig,
            calculate_smart_account_address,
        )
        from xion_sdk.salt import calculate_eth_wallet_salt

        salt = calculate_eth_wallet_salt("0x742d35Cc6634C0532925a3b844Bc454e4438f44e")
        address = calculate_smart_account_address(
            SmartAccountAddressConfig(checksum, creator, salt), instantiate2
        )

Module Organization:
    Validation and Encoding:
    - **errors**: The exception hierarchy
    - **hex_validation**: Hex, bech32 and Ethereum address validation
    - **encoding**: Hex and base64 helpers
    - **authenticator**: Authenticator kinds, credential normalization and detection

    Accounts and Signatures:
    - **salt**: Salt derivation per authenticator kind
    - **account_address**: Bech32 addresses and address prediction
    - **secp256k1_ecdsa**: secp256k1 keys and signatures
    - **signature**: Wallet signature formatting
    - **signature_verification**: secp256k1 and Ethereum signature checks
    - **prepare**: Local account-creation prepare step

    Transactions:
    - **protobuf**: Protobuf wire-format encoding
    - **transactions**: Sign docs, auth info and raw transactions
    - **messages**: Chain messages and account-creation builders
    - **account**: Ordinary key-owned accounts

    Signing:
    - **aa_signer**: The abstract-account signer contract and bound signers
    - **direct_signer**, **eth_signer**, **jwt_signer**, **passkey_signer**,
      **zk_email_signer**: One signer per authenticator kind
    - **aa_client**: The signing and broadcast pipeline

    Services:
    - **async_client**: Chain REST, indexer and account API clients
    - **metadata**: SDK identification header
    - **cli**: Command-line front end

Configuration:
    Environment Variables:
    - **XION_REST_URL**: Chain REST gateway override
    - **XION_INDEXER_URL**: Indexer GraphQL endpoint override
    - **XION_AA_API_URL**: Account API base URL

Development:
    Running tests::

        pip install -e ".[test]"
        python -m pytest xion_sdk/*.py
        behave

License:
    Apache License 2.0
"""
