"""Network client protocol: the seam to the chain.

The engine never signs or broadcasts anything itself.  Any object with
these methods can back a run; ``LocalChain`` is the in-process default.

Clients enforce the ``timeout`` they are given and raise
``NetworkTimeoutError`` when it elapses, and ``RevertError`` when the
target system rejects a deployment or transaction.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from deployplan.models.units import DeployReceipt, TxReceipt


@runtime_checkable
class NetworkClient(Protocol):
    """Protocol for deployment and transaction submission backends."""

    def accounts(self) -> list[str]:
        """Signer addresses available to this client, in index order."""
        ...

    def deploy_contract(
        self,
        *,
        sender: str,
        contract: str,
        code: str,
        args: list[Any],
        deterministic: bool,
        timeout: float,
    ) -> DeployReceipt:
        """Deploy a contract and block until it is mined."""
        ...

    def transact(
        self,
        *,
        sender: str,
        to: str,
        method: str,
        args: list[Any],
        timeout: float,
    ) -> TxReceipt:
        """Send a state-changing transaction and block until it is mined."""
        ...

    def call(
        self,
        *,
        to: str,
        method: str,
        args: list[Any],
        timeout: float,
    ) -> Any:
        """Read-only call against current state."""
        ...
