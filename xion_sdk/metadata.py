# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
SDK identification for outgoing HTTP requests.

Every client in :mod:`xion_sdk.async_client` sends an ``x-xion-client`` header
naming this SDK and its installed version, so chain gateways, the account API
and the session service can tell Python traffic apart in their logs.

Examples:
    Adding the header to a custom request::

        import httpx
        from xion_sdk.metadata import Metadata

        headers = {Metadata.XION_HEADER: Metadata.get_xion_header_val()}
        response = httpx.get("https://api.xion-testnet-1.burnt.com/", headers=headers)
"""

import importlib.metadata as metadata

# Package name constant for metadata lookup
PACKAGE_NAME = "xion-sdk"


class Metadata:
    XION_HEADER = "x-xion-client"

    @staticmethod
    def get_xion_header_val():
        """Header value in the form ``xion-python-sdk/{version}``.

        Raises:
            PackageNotFoundError: If the xion-sdk distribution is not installed.
        """
        version = metadata.version(PACKAGE_NAME)
        return f"xion-python-sdk/{version}"
