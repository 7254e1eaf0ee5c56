"""Deployment unit models: the declaration side of a deployment plan.

A ``DeploymentUnit`` is declared once at process start and never mutated.
Its ``describe`` step is side-effect-free and yields a ``UnitDescription``
from which the engine computes fingerprints; its ``deploy`` step submits
the deployment and returns a ``DeployReceipt``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from deployplan.core.hasher import args_fingerprint, code_fingerprint


class UnitHandle(BaseModel):
    """Typed reference to a registered unit.

    Returned by ``DeploymentGraph.register``. ``ordinal`` is the
    registration sequence number and drives resolver tie-breaks.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    ordinal: int

    def __str__(self) -> str:
        return self.id


UnitRef = str | UnitHandle


def ref_id(ref: UnitRef) -> str:
    """Return the unit id for a string id or a ``UnitHandle``."""
    return ref.id if isinstance(ref, UnitHandle) else ref


class UnitDescription(BaseModel):
    """What a unit would deploy, computed without side effects."""

    model_config = ConfigDict(frozen=True)

    contract: str
    code: str  # bytecode hex or a stable code identity
    args: list[Any] = Field(default_factory=list)
    sender: str = "deployer"  # named account role
    deterministic: bool = False

    def code_fingerprint(self) -> str:
        return code_fingerprint(self.code)

    def args_fingerprint(self, sender_address: str) -> str:
        return args_fingerprint(
            self.contract, self.args, sender_address, self.deterministic
        )


class DeployReceipt(BaseModel):
    """Result of submitting a deployment to the network client."""

    model_config = ConfigDict(frozen=True)

    address: str
    transaction_hash: str = ""


class TxReceipt(BaseModel):
    """Result of submitting a transaction to the network client."""

    model_config = ConfigDict(frozen=True)

    transaction_hash: str
    to: str
    method: str
    status: bool = True
    return_value: Any = None


class Action(BaseModel):
    """A post-deployment configuration step with a convergence check.

    ``predicate(ctx) -> bool`` must be side-effect-free and report whether
    the action's effect is already in place. ``apply(ctx)`` performs it.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    predicate: Callable[..., bool]
    apply: Callable[..., Any]
    description: str = ""


class DeploymentUnit(BaseModel):
    """A named, dependency-aware deployment step producing one artifact.

    ``dependencies`` accepts unit ids or ``UnitHandle`` objects; string ids
    are late-bound and resolved to handles by ``DeploymentGraph.validate``.
    When ``deploy`` is omitted the unit deploys its description through the
    context's network client.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    describe: Callable[..., UnitDescription]
    tags: tuple[str, ...] = ()
    dependencies: tuple[UnitRef, ...] = ()
    deploy: Callable[..., DeployReceipt] | None = None
    actions: tuple[Action, ...] = ()

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("unit id must not be blank")
        return value

    @property
    def dependency_ids(self) -> list[str]:
        return [ref_id(dep) for dep in self.dependencies]

    def matches_tags(self, tags: set[str]) -> bool:
        """Tag filter: a unit is selected by any of its tags or by its id."""
        return self.id in tags or bool(tags.intersection(self.tags))


def action_key(ordinal: int, name: str) -> str:
    """Stable identifier of an action within its unit."""
    return f"{ordinal:02d}:{name}"
