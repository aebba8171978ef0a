"""Ledger and provider clients.

``memory`` holds in-process implementations for tests and dry runs;
``lotus`` and ``provider_http`` talk to real nodes over HTTP.
"""

from .lotus import LotusLedgerClient
from .memory import SimulatedLedger, SimulatedProvider, SimulatedProviderNetwork
from .provider_http import HttpProviderTransport

__all__ = [
    "HttpProviderTransport",
    "LotusLedgerClient",
    "SimulatedLedger",
    "SimulatedProvider",
    "SimulatedProviderNetwork",
]
