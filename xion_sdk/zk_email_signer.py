# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Signer for abstract accounts controlled by a zk-email proof.

The Groth16 proof and its public inputs are produced elsewhere, by a prover
that has seen the authorizing email. This signer only packages them into the
JSON payload the account contract's ZKEmail authenticator expects::

    {"proof": {"pi_a": [...], "pi_b": [[...], [...], [...]], "pi_c": [...],
               "protocol": "groth16"},
     "publicInputs": [...]}

No verification happens client-side.
"""

from __future__ import annotations

import base64
import json
import unittest
from typing import Any, Dict, List

from .aa_signer import AASigner, AAccountData, DirectSignResponse
from .account_address import AccountAddress
from .errors import InputValidationError
from .transactions import SignDoc


class ZKEmailSigner(AASigner):
    proof: str
    public_inputs: str

    def __init__(self, proof: str, public_inputs: str, authenticator_id: int):
        super().__init__(authenticator_id)
        self.proof = proof
        self.public_inputs = public_inputs

    def payload(self) -> Dict[str, Any]:
        """The proof payload, with missing proof fields given their empty defaults.

        Raises:
            InputValidationError: If the proof or the public inputs are not JSON.
        """
        try:
            proof = json.loads(self.proof)
            public_inputs = json.loads(self.public_inputs)
        except (TypeError, ValueError) as e:
            raise InputValidationError("Invalid proof or publicInputs format") from e
        if not isinstance(proof, dict):
            raise InputValidationError("Invalid proof or publicInputs format")
        return {
            "proof": {
                "pi_a": proof.get("pi_a") or [],
                "pi_b": proof.get("pi_b") or [[], [], []],
                "pi_c": proof.get("pi_c") or [],
                "protocol": proof.get("protocol") or "groth16",
            },
            "publicInputs": public_inputs or [],
        }

    async def get_accounts(self, abstract_account: str) -> List[AAccountData]:
        return [
            AAccountData(
                address=abstract_account,
                account_address=abstract_account,
                authenticator_id=self.authenticator_id,
                algo="secp256k1",
            )
        ]

    async def sign_direct(
        self, signer_address: str, sign_doc: SignDoc
    ) -> DirectSignResponse:
        payload = json.dumps(self.payload(), separators=(",", ":")).encode("utf-8")
        return DirectSignResponse.from_signature(
            sign_doc, base64.b64encode(payload).decode()
        )


class Test(unittest.IsolatedAsyncioTestCase):
    PROOF = json.dumps(
        {"pi_a": ["1", "2", "1"], "pi_b": [["3", "4"], ["5", "6"], ["1", "0"]], "pi_c": ["7", "8", "1"]}
    )

    def setUp(self):
        self.sign_doc = SignDoc(b"body", b"auth", "xion-testnet-1", 2)

    async def test_sign_direct_packages_proof(self):
        signer = ZKEmailSigner(Test.PROOF, '["11", "12"]', 3)
        response = await signer.sign_direct("", self.sign_doc)
        payload = json.loads(base64.b64decode(response.signature.signature))
        self.assertEqual(payload["proof"]["pi_a"], ["1", "2", "1"])
        self.assertEqual(payload["proof"]["protocol"], "groth16")
        self.assertEqual(payload["publicInputs"], ["11", "12"])
        self.assertIs(response.signed, self.sign_doc)

    def test_defaults(self):
        payload = ZKEmailSigner("{}", "null", 0).payload()
        self.assertEqual(
            payload,
            {
                "proof": {"pi_a": [], "pi_b": [[], [], []], "pi_c": [], "protocol": "groth16"},
                "publicInputs": [],
            },
        )

    async def test_invalid_json(self):
        for proof, inputs in (("not json", "[]"), (Test.PROOF, "{"), ("[]", "[]")):
            with self.assertRaisesRegex(InputValidationError, "Invalid proof"):
                await ZKEmailSigner(proof, inputs, 0).sign_direct("", self.sign_doc)

    async def test_get_accounts(self):
        account_address = str(AccountAddress(bytes(range(32))))
        (account,) = await ZKEmailSigner(Test.PROOF, "[]", 5).bind(
            account_address
        ).get_accounts()
        self.assertEqual(account.authenticator_id, 5)
        self.assertEqual(account.address, account_address)
