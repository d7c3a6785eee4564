# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Exception hierarchy for the XION abstract-account SDK.

Every failure raised by this package derives from :class:`XionSdkError`, split
into four categories so callers can tell a bad argument apart from a broken
signature, an unresolvable account, or a misbehaving remote service.

Categories:
    InputValidationError: malformed hex, bech32, base64 or a length mismatch.
        Always raised before any cryptographic step and always names the
        offending field ("checksum", "salt", "signature", ...).
    CryptographicFailureError: a signature or public key could not be decoded
        or recovered. A well-formed signature that simply does not match is
        *not* an error; verification predicates return ``False`` for that.
    ProtocolStateError: zero or ambiguous account resolution, a missing
        on-chain account, or a signer used before it was bound.
    ExternalServiceError: a non-2xx or malformed response from the chain
        gateway, the indexer, the account-creation API or the session service.

Examples:
    Distinguishing failures::

        from xion_sdk.errors import InputValidationError, XionSdkError

        try:
            calculate_salt(AuthenticatorKind.ETH_WALLET, "0x1234")
        except InputValidationError as e:
            print(f"bad input: {e}")
        except XionSdkError as e:
            print(f"other failure: {e}")
"""

from typing import Optional


class XionSdkError(Exception):
    """Base class for all errors raised by this package."""


class InputValidationError(XionSdkError, ValueError):
    """An argument was malformed or had the wrong length."""


class CryptographicFailureError(XionSdkError):
    """A signature or public key could not be decoded or recovered."""


class ProtocolStateError(XionSdkError):
    """Account resolution produced zero or ambiguous results."""


class ExternalServiceError(XionSdkError):
    """A remote service returned a non-success status code or a malformed body."""

    status_code: Optional[int]

    def __init__(self, message: str, status_code: Optional[int] = None):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.status_code = status_code
