"""Deploy context: what a unit's describe, deploy and action steps can see.

A context exposes the environment, named accounts, the network client, a
logger, and read-only access to the artifacts of the unit's declared
dependencies.  Reading any other unit's artifact is a programming error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from deployplan.core.accounts import NamedAccountResolver
from deployplan.core.errors import MissingArtifactError, UndeclaredDependencyAccessError
from deployplan.models.artifacts import Artifact
from deployplan.models.config import Environment
from deployplan.models.units import (
    DeploymentUnit,
    DeployReceipt,
    TxReceipt,
    UnitDescription,
    UnitRef,
    ref_id,
)
from deployplan.network.base import NetworkClient

ArtifactLookup = Callable[[str], Artifact | None]


class DeployContext:
    """Per-unit view of a run.

    Parameters
    ----------
    unit:
        The unit this context is scoped to.
    environment:
        The target environment.
    accounts:
        Named accounts for the environment.
    client:
        Network client used for deployments, transactions and reads.
    lookup:
        Returns the live artifact for a unit id, or None.
    timeout:
        Timeout in seconds passed to every network call.
    """

    def __init__(
        self,
        unit: DeploymentUnit,
        environment: Environment,
        accounts: NamedAccountResolver,
        client: NetworkClient,
        lookup: ArtifactLookup,
        *,
        timeout: float = 30.0,
        description: UnitDescription | None = None,
        artifact: Artifact | None = None,
    ) -> None:
        self.unit = unit
        self.environment = environment
        self.accounts = accounts
        self.client = client
        self.timeout = timeout
        self._lookup = lookup
        self._allowed = frozenset(unit.dependency_ids)
        self._description = description
        self._artifact = artifact
        self.logger = logging.LoggerAdapter(
            logging.getLogger(f"deployplan.unit.{unit.id}"),
            {"environment": environment.name, "unit_id": unit.id},
        )

    def _derive(self, **changes: Any) -> DeployContext:
        params: dict[str, Any] = {
            "timeout": self.timeout,
            "description": self._description,
            "artifact": self._artifact,
        }
        params.update(changes)
        return DeployContext(
            self.unit, self.environment, self.accounts, self.client, self._lookup,
            **params,
        )

    def with_description(self, description: UnitDescription) -> DeployContext:
        return self._derive(description=description)

    def with_artifact(self, artifact: Artifact) -> DeployContext:
        return self._derive(artifact=artifact)

    # ------------------------------------------------------------------
    # Accounts and artifacts
    # ------------------------------------------------------------------

    def account(self, role: str) -> str:
        """Address of a named account role."""
        return self.accounts.resolve(role)

    @property
    def description(self) -> UnitDescription:
        if self._description is None:
            raise RuntimeError(f"Unit '{self.unit.id}' has not been described yet")
        return self._description

    @property
    def self_artifact(self) -> Artifact:
        """This unit's own artifact (available to actions)."""
        if self._artifact is None:
            raise MissingArtifactError(
                f"Unit '{self.unit.id}' has no artifact in this context",
                unit_id=self.unit.id,
            )
        return self._artifact

    def artifact(self, ref: UnitRef) -> Artifact:
        """Artifact of a declared dependency (or of this unit, once deployed).

        Raises
        ------
        UndeclaredDependencyAccessError
            If ``ref`` is neither this unit nor one of its dependencies.
        MissingArtifactError
            If the dependency has not been deployed in this environment.
        """
        uid = ref_id(ref)
        if uid == self.unit.id:
            return self.self_artifact
        if uid not in self._allowed:
            raise UndeclaredDependencyAccessError(
                f"Unit '{self.unit.id}' read the artifact of '{uid}', which is "
                f"not among its dependencies {sorted(self._allowed)}",
                unit_id=self.unit.id,
                details={"accessed": uid},
            )
        found = self._lookup(uid)
        if found is None:
            raise MissingArtifactError(
                f"Dependency '{uid}' of '{self.unit.id}' has no artifact in "
                f"'{self.environment.name}'",
                unit_id=self.unit.id,
                details={"dependency": uid},
            )
        return found

    def address(self, ref: UnitRef) -> str:
        return self.artifact(ref).address

    def _target_address(self, target: UnitRef) -> str:
        # Raw addresses pass through; anything else is a unit reference.
        if isinstance(target, str) and target.startswith("0x"):
            return target
        return self.address(target)

    # ------------------------------------------------------------------
    # Network submission
    # ------------------------------------------------------------------

    def deploy_description(self) -> DeployReceipt:
        """Submit this unit's description to the network client."""
        desc = self.description
        sender = self.account(desc.sender)
        self.logger.debug("Deploying %s from %s", desc.contract, sender)
        return self.client.deploy_contract(
            sender=sender,
            contract=desc.contract,
            code=desc.code,
            args=list(desc.args),
            deterministic=desc.deterministic,
            timeout=self.timeout,
        )

    def transact(
        self, target: UnitRef, method: str, *args: Any, sender: str = "deployer"
    ) -> TxReceipt:
        """Send a transaction to a unit's artifact (or a raw address)."""
        to = self._target_address(target)
        self.logger.debug("Executing %s.%s%r", ref_id(target), method, args)
        return self.client.transact(
            sender=self.account(sender),
            to=to,
            method=method,
            args=list(args),
            timeout=self.timeout,
        )

    def call(self, target: UnitRef, method: str, *args: Any) -> Any:
        """Read-only call against a unit's artifact (or a raw address)."""
        return self.client.call(
            to=self._target_address(target),
            method=method,
            args=list(args),
            timeout=self.timeout,
        )
