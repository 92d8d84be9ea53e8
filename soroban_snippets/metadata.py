# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Client identification headers for Soroban RPC requests.

Every request sent by :class:`soroban_snippets.async_client.SorobanRpcClient`
carries a pair of headers naming this package and its installed version, the
same pair the official Stellar SDKs send. RPC operators use them to tell client
libraries apart in their logs.

Examples:
    Building the headers by hand::

        from soroban_snippets.metadata import Metadata

        headers = Metadata.headers()
        # {"X-Client-Name": "soroban-snippets-python", "X-Client-Version": "0.1.0"}

Note:
    The version is read from the installed distribution metadata, so the
    package must be installed (``pip install -e .`` is enough).
"""

import importlib.metadata as metadata
from typing import Dict

# Distribution name used for the metadata lookup
PACKAGE_NAME = "soroban-snippets"


class Metadata:
    """Header names and values identifying this client to RPC servers."""

    CLIENT_NAME_HEADER = "X-Client-Name"
    CLIENT_VERSION_HEADER = "X-Client-Version"
    CLIENT_NAME = "soroban-snippets-python"

    @staticmethod
    def get_client_version() -> str:
        """Return the installed version of this package.

        :raises PackageNotFoundError: If the distribution is not installed.
        """
        return metadata.version(PACKAGE_NAME)

    @staticmethod
    def headers() -> Dict[str, str]:
        return {
            Metadata.CLIENT_NAME_HEADER: Metadata.CLIENT_NAME,
            Metadata.CLIENT_VERSION_HEADER: Metadata.get_client_version(),
        }
