"""Network clients: the protocol the engine talks to and a local simulator."""

from deployplan.network.base import NetworkClient
from deployplan.network.local import LocalChain, SimulatedContract, StorageContract

__all__ = ["LocalChain", "NetworkClient", "SimulatedContract", "StorageContract"]
