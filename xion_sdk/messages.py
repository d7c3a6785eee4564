# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
On-chain messages for registering and managing abstract accounts.

Every message type here knows its protobuf type URL and its field layout, and
converts itself to a ``google.protobuf.Any`` with :meth:`Msg.to_any` so it can
be placed in a :class:`~xion_sdk.transactions.TxBody`.

Account creation is performed by a worker account holding an authz grant from
the fee granter. It submits two ``MsgExec`` messages:

1. ``MsgRegisterAccount`` instantiating the account contract with an
   authenticator init message and the credential's salt.
2. ``MsgGrantAllowance`` giving the new account a fee allowance: any of a
   contract-scoped allowance or a message-type-scoped allowance, both backed
   by a one-day periodic limit of ``100000uxion``.

Authenticators are later added or removed through ``MsgExecuteContract``
calls from the account to itself.

Examples:
    Building the account-creation messages for a Keplr key::

        from xion_sdk.messages import MessageConfig, build_secp256k1_account_messages

        config = MessageConfig(
            code_id=1,
            fee_granter="xion1granter...",
            smart_account_address=predicted_address,
            salt=bytes.fromhex(salt_hex),
        )
        msgs = build_secp256k1_account_messages(
            config, pubkey_hex, signature_hex, worker_address
        )
"""

from __future__ import annotations

import json
import unittest
from dataclasses import dataclass, field
from typing import Any as AnyType
from typing import ClassVar, Dict, List

from .errors import InputValidationError
from .protobuf import Deserializer, Serializer, encoder
from .signature import hex_pubkey_to_base64, hex_signature_to_base64
from .transactions import Any, Coin

ONE_DAY_IN_SECONDS = 24 * 60 * 60
DEFAULT_PERIOD_SPEND_LIMIT = "100000"


class Msg:
    """Base class for messages that can be wrapped in a ``google.protobuf.Any``."""

    TYPE_URL: ClassVar[str]

    def serialize(self, serializer: Serializer):
        raise NotImplementedError

    def to_any(self) -> Any:
        return Any(self.TYPE_URL, encoder(self))


def json_msg(value: Dict[str, AnyType]) -> bytes:
    """Compact JSON bytes for a CosmWasm message, keys kept in insertion order."""
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


@dataclass
class MsgSend(Msg):
    TYPE_URL: ClassVar[str] = "/cosmos.bank.v1beta1.MsgSend"

    from_address: str
    to_address: str
    amount: List[Coin]

    def serialize(self, serializer: Serializer):
        serializer.str(1, self.from_address)
        serializer.str(2, self.to_address)
        serializer.repeated_struct(3, self.amount)


@dataclass
class MsgRegisterAccount(Msg):
    TYPE_URL: ClassVar[str] = "/abstractaccount.v1.MsgRegisterAccount"

    sender: str
    code_id: int
    msg: bytes
    funds: List[Coin] = field(default_factory=list)
    salt: bytes = b""

    def serialize(self, serializer: Serializer):
        serializer.str(1, self.sender)
        serializer.uint64(2, self.code_id)
        serializer.to_bytes(3, self.msg)
        serializer.repeated_struct(4, self.funds)
        serializer.to_bytes(5, self.salt)


@dataclass
class MsgExec(Msg):
    TYPE_URL: ClassVar[str] = "/cosmos.authz.v1beta1.MsgExec"

    grantee: str
    msgs: List[Any]

    def serialize(self, serializer: Serializer):
        serializer.str(1, self.grantee)
        serializer.repeated_struct(2, self.msgs)


@dataclass
class MsgExecuteContract(Msg):
    TYPE_URL: ClassVar[str] = "/cosmwasm.wasm.v1.MsgExecuteContract"

    sender: str
    contract: str
    msg: bytes
    funds: List[Coin] = field(default_factory=list)

    def serialize(self, serializer: Serializer):
        serializer.str(1, self.sender)
        serializer.str(2, self.contract)
        serializer.to_bytes(3, self.msg)
        serializer.repeated_struct(5, self.funds)


@dataclass
class MsgGrantAllowance(Msg):
    TYPE_URL: ClassVar[str] = "/cosmos.feegrant.v1beta1.MsgGrantAllowance"

    granter: str
    grantee: str
    allowance: Any

    def serialize(self, serializer: Serializer):
        serializer.str(1, self.granter)
        serializer.str(2, self.grantee)
        serializer.struct(3, self.allowance)


MSG_GRANT_TYPE_URL = "/cosmos.authz.v1beta1.MsgGrant"
MSG_MIGRATE_CONTRACT_TYPE_URL = "/cosmwasm.wasm.v1.MsgMigrateContract"


@dataclass
class Duration:
    seconds: int
    nanos: int = 0

    def serialize(self, serializer: Serializer):
        serializer.uint64(1, self.seconds)
        serializer.uint64(2, self.nanos)


@dataclass
class PeriodicAllowance(Msg):
    TYPE_URL: ClassVar[str] = "/cosmos.feegrant.v1beta1.PeriodicAllowance"

    period: Duration
    period_spend_limit: List[Coin]

    def serialize(self, serializer: Serializer):
        serializer.struct(2, self.period)
        serializer.repeated_struct(3, self.period_spend_limit)


@dataclass
class AllowedMsgAllowance(Msg):
    TYPE_URL: ClassVar[str] = "/cosmos.feegrant.v1beta1.AllowedMsgAllowance"

    allowance: Any
    allowed_messages: List[str]

    def serialize(self, serializer: Serializer):
        serializer.struct(1, self.allowance)
        serializer.repeated_str(2, self.allowed_messages)


@dataclass
class ContractsAllowance(Msg):
    TYPE_URL: ClassVar[str] = "/xion.v1.ContractsAllowance"

    allowance: Any
    contract_addresses: List[str]

    def serialize(self, serializer: Serializer):
        serializer.struct(1, self.allowance)
        serializer.repeated_str(2, self.contract_addresses)


@dataclass
class MultiAnyAllowance(Msg):
    TYPE_URL: ClassVar[str] = "/xion.v1.MultiAnyAllowance"

    allowances: List[Any]

    def serialize(self, serializer: Serializer):
        serializer.repeated_struct(1, self.allowances)


@dataclass
class MessageConfig:
    """Parameters shared by the account-creation messages.

    Attributes:
        code_id: Code id of the account contract.
        fee_granter: Address that registers the account and grants it fees.
        smart_account_address: The predicted address of the new account.
        salt: Raw 32-byte salt.
    """

    code_id: int
    fee_granter: str
    smart_account_address: str
    salt: bytes


def build_eth_wallet_init_msg(address: str, signature: str) -> Dict[str, AnyType]:
    """Account contract instantiate message for an Ethereum wallet authenticator.

    Args:
        address: Ethereum address; lowercased and given a ``0x`` prefix.
        signature: Base64 signature over the predicted account address.
    """
    normalized_address = address.lower()
    if not normalized_address.startswith("0x"):
        normalized_address = "0x" + normalized_address
    if len(normalized_address) != 42:
        raise InputValidationError(
            "EthWallet address must be 42 characters (0x + 40 hex), "
            f"got {len(normalized_address)}"
        )
    return {
        "id": 0,
        "authenticator": {
            "EthWallet": {"id": 0, "address": normalized_address, "signature": signature}
        },
    }


def build_secp256k1_init_msg(pubkey: str, signature: str) -> Dict[str, AnyType]:
    """Account contract instantiate message for a secp256k1 authenticator (base64 inputs)."""
    return {
        "id": 0,
        "authenticator": {
            "Secp256K1": {"id": 0, "pubkey": pubkey, "signature": signature}
        },
    }


def build_msg_register_account(
    config: MessageConfig, init_msg: Dict[str, AnyType], worker_address: str
) -> MsgExec:
    register = MsgRegisterAccount(
        sender=config.fee_granter,
        code_id=config.code_id,
        msg=json_msg(init_msg),
        funds=[],
        salt=config.salt,
    )
    return MsgExec(grantee=worker_address, msgs=[register.to_any()])


def _periodic_allowance() -> Any:
    return PeriodicAllowance(
        period=Duration(seconds=ONE_DAY_IN_SECONDS),
        period_spend_limit=[Coin("uxion", DEFAULT_PERIOD_SPEND_LIMIT)],
    ).to_any()


def build_fee_grant_message(config: MessageConfig, worker_address: str) -> MsgExec:
    allowance = MultiAnyAllowance(
        allowances=[
            ContractsAllowance(
                allowance=_periodic_allowance(),
                contract_addresses=[config.smart_account_address],
            ).to_any(),
            AllowedMsgAllowance(
                allowance=_periodic_allowance(),
                allowed_messages=[
                    MSG_GRANT_TYPE_URL,
                    MsgGrantAllowance.TYPE_URL,
                    MsgExecuteContract.TYPE_URL,
                    MSG_MIGRATE_CONTRACT_TYPE_URL,
                ],
            ).to_any(),
        ]
    )
    grant = MsgGrantAllowance(
        granter=config.fee_granter,
        grantee=config.smart_account_address,
        allowance=allowance.to_any(),
    )
    return MsgExec(grantee=worker_address, msgs=[grant.to_any()])


def build_eth_wallet_account_messages(
    config: MessageConfig, address: str, signature_hex: str, worker_address: str
) -> List[MsgExec]:
    init_msg = build_eth_wallet_init_msg(address, hex_signature_to_base64(signature_hex))
    return [
        build_msg_register_account(config, init_msg, worker_address),
        build_fee_grant_message(config, worker_address),
    ]


def build_secp256k1_account_messages(
    config: MessageConfig, pubkey_hex: str, signature_hex: str, worker_address: str
) -> List[MsgExec]:
    init_msg = build_secp256k1_init_msg(
        hex_pubkey_to_base64(pubkey_hex), hex_signature_to_base64(signature_hex)
    )
    return [
        build_msg_register_account(config, init_msg, worker_address),
        build_fee_grant_message(config, worker_address),
    ]


#
# Authenticator management
#


def add_secp256k1_authenticator(
    authenticator_id: int, pubkey: str, signature: str
) -> Dict[str, AnyType]:
    return {
        "add_auth_method": {
            "add_authenticator": {
                "Secp256K1": {
                    "id": authenticator_id,
                    "pubkey": pubkey,
                    "signature": signature,
                }
            }
        }
    }


def add_ed25519_authenticator(
    authenticator_id: int, pubkey: str, signature: str
) -> Dict[str, AnyType]:
    return {
        "add_auth_method": {
            "add_authenticator": {
                "Ed25519": {
                    "id": authenticator_id,
                    "pubkey": pubkey,
                    "signature": signature,
                }
            }
        }
    }


def add_eth_wallet_authenticator(
    authenticator_id: int, address: str, signature: str
) -> Dict[str, AnyType]:
    return {
        "add_auth_method": {
            "add_authenticator": {
                "EthWallet": {
                    "id": authenticator_id,
                    "address": address,
                    "signature": signature,
                }
            }
        }
    }


def add_jwt_authenticator(
    authenticator_id: int, aud: str, sub: str, token: str
) -> Dict[str, AnyType]:
    return {
        "add_auth_method": {
            "add_authenticator": {
                "Jwt": {"id": authenticator_id, "aud": aud, "sub": sub, "token": token}
            }
        }
    }


def remove_authenticator(authenticator_id: int) -> Dict[str, AnyType]:
    return {"remove_auth_method": {"id": authenticator_id}}


def execute_on_self(account: str, msg: Dict[str, AnyType]) -> MsgExecuteContract:
    """A contract call from an abstract account to itself."""
    return MsgExecuteContract(sender=account, contract=account, msg=json_msg(msg))


class Test(unittest.TestCase):
    CONFIG = MessageConfig(
        code_id=793,
        fee_granter="xion1granter",
        smart_account_address="xion1account",
        salt=bytes(32),
    )

    def test_eth_wallet_init_msg(self):
        msg = build_eth_wallet_init_msg("AB" * 20, "c2ln")
        self.assertEqual(
            msg,
            {
                "id": 0,
                "authenticator": {
                    "EthWallet": {"id": 0, "address": "0x" + "ab" * 20, "signature": "c2ln"}
                },
            },
        )
        with self.assertRaisesRegex(InputValidationError, "42 characters"):
            build_eth_wallet_init_msg("0x1234", "c2ln")

    def test_register_account_layout(self):
        init_msg = build_secp256k1_init_msg("cHVi", "c2ln")
        exec_msg = build_msg_register_account(self.CONFIG, init_msg, "xion1worker")
        self.assertEqual(exec_msg.grantee, "xion1worker")
        self.assertEqual(len(exec_msg.msgs), 1)
        inner = exec_msg.msgs[0]
        self.assertEqual(inner.type_url, "/abstractaccount.v1.MsgRegisterAccount")

        fields = Deserializer(inner.value).field_map()
        self.assertEqual(fields[1], [b"xion1granter"])
        self.assertEqual(fields[2], [793])
        self.assertEqual(
            json.loads(fields[3][0]),  # type: ignore[arg-type]
            {"id": 0, "authenticator": {"Secp256K1": {"id": 0, "pubkey": "cHVi", "signature": "c2ln"}}},
        )
        self.assertNotIn(4, fields)
        self.assertEqual(fields[5], [bytes(32)])

    def test_fee_grant_message(self):
        exec_msg = build_fee_grant_message(self.CONFIG, "xion1worker")
        grant = exec_msg.msgs[0]
        self.assertEqual(grant.type_url, MsgGrantAllowance.TYPE_URL)
        grant_fields = Deserializer(grant.value).field_map()
        self.assertEqual(grant_fields[1], [b"xion1granter"])
        self.assertEqual(grant_fields[2], [b"xion1account"])
        allowance = Any.from_bytes(grant_fields[3][0])  # type: ignore[arg-type]
        self.assertEqual(allowance.type_url, "/xion.v1.MultiAnyAllowance")
        inner = [
            Any.from_bytes(raw)  # type: ignore[arg-type]
            for raw in Deserializer(allowance.value).field_map()[1]
        ]
        self.assertEqual(
            [a.type_url for a in inner],
            ["/xion.v1.ContractsAllowance", "/cosmos.feegrant.v1beta1.AllowedMsgAllowance"],
        )
        allowed = Deserializer(inner[1].value).field_map()[2]
        self.assertEqual(
            allowed,
            [
                b"/cosmos.authz.v1beta1.MsgGrant",
                b"/cosmos.feegrant.v1beta1.MsgGrantAllowance",
                b"/cosmwasm.wasm.v1.MsgExecuteContract",
                b"/cosmwasm.wasm.v1.MsgMigrateContract",
            ],
        )
        periodic = Any.from_bytes(
            Deserializer(inner[0].value).field_map()[1][0]  # type: ignore[arg-type]
        )
        self.assertEqual(
            periodic.value,
            b"\x12\x04\x08\x80\xa3\x05\x1a\x0f\x0a\x05uxion\x12\x06100000",
        )

    def test_account_messages(self):
        msgs = build_secp256k1_account_messages(
            self.CONFIG, "02" + "11" * 32, "22" * 64, "xion1worker"
        )
        self.assertEqual(len(msgs), 2)
        register = Deserializer(msgs[0].msgs[0].value).field_map()
        init_msg = json.loads(register[3][0])  # type: ignore[arg-type]
        self.assertEqual(
            init_msg["authenticator"]["Secp256K1"]["pubkey"],
            hex_pubkey_to_base64("02" + "11" * 32),
        )
        eth = build_eth_wallet_account_messages(
            self.CONFIG, "0x" + "ab" * 20, "0x" + "33" * 65, "xion1worker"
        )
        self.assertEqual([m.TYPE_URL for m in eth], [MsgExec.TYPE_URL] * 2)

    def test_execute_on_self(self):
        msg = execute_on_self("xion1account", remove_authenticator(2))
        self.assertEqual(msg.sender, msg.contract)
        self.assertEqual(msg.msg, b'{"remove_auth_method":{"id":2}}')
        self.assertEqual(msg.to_any().type_url, "/cosmwasm.wasm.v1.MsgExecuteContract")
        self.assertEqual(
            add_jwt_authenticator(3, "aud", "sub", "tok")["add_auth_method"][
                "add_authenticator"
            ]["Jwt"]["id"],
            3,
        )
