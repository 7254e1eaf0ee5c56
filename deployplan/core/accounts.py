"""Named account resolution: logical roles to concrete addresses.

The account file maps each role to a signer index or address, per
environment::

    {
        "deployer":  {"default": 0},
        "lender":    {"default": 1, "mainnet": "0xAbC..."},
        "borrower1": {"default": 2}
    }

Integer values index into the network client's signer list; string values
are literal addresses.  An entry for the active environment wins over
``"default"``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from types import MappingProxyType
from typing import Any

from deployplan.core.errors import UnknownRoleError

logger = logging.getLogger(__name__)

DEFAULT_ROLES: dict[str, dict[str, int | str]] = {
    "deployer": {"default": 0},
    "lender": {"default": 1},
    "borrower1": {"default": 2},
    "borrower2": {"default": 3},
}


class NamedAccountResolver:
    """Immutable role -> address lookup for one environment.

    Parameters
    ----------
    environment:
        Name of the environment the mapping was loaded for.
    accounts:
        Mapping of role name to address.
    """

    def __init__(self, environment: str, accounts: Mapping[str, str]) -> None:
        self._environment = environment
        self._accounts: Mapping[str, str] = MappingProxyType(dict(accounts))

    @classmethod
    def from_config(
        cls,
        environment: str,
        roles: Mapping[str, Mapping[str, int | str]],
        signers: Sequence[str] = (),
    ) -> NamedAccountResolver:
        """Build a resolver from a ``namedAccounts``-style role table."""
        accounts: dict[str, str] = {}
        for role, per_env in roles.items():
            if environment in per_env:
                value = per_env[environment]
            elif "default" in per_env:
                value = per_env["default"]
            else:
                logger.debug(
                    "Role '%s' has no entry for '%s' and no default.", role, environment
                )
                continue
            accounts[role] = cls._resolve_value(role, value, signers)
        return cls(environment, accounts)

    @classmethod
    def from_file(
        cls, path: Path, environment: str, signers: Sequence[str] = ()
    ) -> NamedAccountResolver:
        """Load a role table from a JSON file."""
        data: dict[str, Any] = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.from_config(environment, data, signers)

    @staticmethod
    def _resolve_value(role: str, value: int | str, signers: Sequence[str]) -> str:
        if isinstance(value, bool):
            raise ValueError(f"Role '{role}' has a boolean account value")
        if isinstance(value, int):
            if not 0 <= value < len(signers):
                raise ValueError(
                    f"Role '{role}' refers to signer #{value}, "
                    f"but only {len(signers)} signers are available"
                )
            return signers[value]
        return value

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def environment(self) -> str:
        return self._environment

    def resolve(self, role: str) -> str:
        """Return the address for a role.

        Raises
        ------
        UnknownRoleError
            If the role is not configured for this environment.
        """
        try:
            return self._accounts[role]
        except KeyError:
            raise UnknownRoleError(
                f"Role '{role}' is not configured for environment "
                f"'{self._environment}'. Known roles: {sorted(self._accounts)}",
                details={"role": role, "environment": self._environment},
            ) from None

    def __contains__(self, role: object) -> bool:
        return role in self._accounts
