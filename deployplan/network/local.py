"""In-process simulated chain implementing ``NetworkClient``.

``LocalChain`` keeps contract state in plain JSON-compatible dicts so a
whole chain can be snapshotted to disk and reloaded by a later process.
Contract behaviour is supplied by ``SimulatedContract`` subclasses looked up
by contract name; unknown contracts get the generic ``StorageContract``.

Features
--------
- Ten deterministic signer accounts.
- CREATE2-style addresses for deterministic deployments (redeploying the
  same code and args to the same address is a no-op, as with a
  deterministic deployment proxy) and sender+nonce addresses otherwise.
- Reverts roll back every state change made by the transaction.
- Fault injection (``inject_fault``) for timeouts before or after a
  transaction lands.
- With a ``snapshot_path`` every state change is written to disk before
  the call returns or raises, so a killed process never loses a
  contract the artifact store already recorded.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, ClassVar

from deployplan.core.errors import ChainMismatchError, NetworkTimeoutError, RevertError
from deployplan.core.hasher import (
    args_fingerprint,
    canonical_json_bytes,
    code_fingerprint,
    deterministic_address,
    nonce_address,
    sha256_hex,
)
from deployplan.models.units import DeployReceipt, TxReceipt

logger = logging.getLogger(__name__)

DEFAULT_CHAIN_ID = 31337
SIGNER_COUNT = 10


def signer_address(index: int) -> str:
    """Address of the ``index``-th deterministic signer."""
    return "0x" + sha256_hex(f"deployplan-signer-{index}".encode("utf-8"))[-40:]


def require(condition: bool, message: str) -> None:
    """Revert the current transaction unless ``condition`` holds."""
    if not condition:
        raise RevertError(f"execution reverted: {message}")


# ---------------------------------------------------------------------------
# Contract behaviour
# ---------------------------------------------------------------------------


def external(name: str | None = None) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Expose a method as a state-changing contract function."""

    def wrap(fn: Callable[..., Any]) -> Callable[..., Any]:
        fn.__abi__ = (name or fn.__name__, False)  # type: ignore[attr-defined]
        return fn

    return wrap


def view(name: str | None = None) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Expose a method as a read-only contract function."""

    def wrap(fn: Callable[..., Any]) -> Callable[..., Any]:
        fn.__abi__ = (name or fn.__name__, True)  # type: ignore[attr-defined]
        return fn

    return wrap


class SimulatedContract:
    """Python stand-in for a deployed contract.

    Subclasses set ``NAME`` (the contract name plans deploy), implement
    ``constructor`` and expose functions with ``@external`` / ``@view``.
    Every exposed function receives the caller address as its first
    argument.  All persistent state lives in ``self.state`` and must be
    JSON-compatible.
    """

    NAME: ClassVar[str] = ""
    _abi: ClassVar[dict[str, tuple[str, bool]]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        abi: dict[str, tuple[str, bool]] = {}
        for klass in reversed(cls.__mro__):
            for attr, member in vars(klass).items():
                abi_entry = getattr(member, "__abi__", None)
                if abi_entry is not None:
                    abi[abi_entry[0]] = (attr, abi_entry[1])
        cls._abi = abi

    def __init__(self, chain: LocalChain, address: str, state: dict[str, Any] | None = None) -> None:
        self.chain = chain
        self.address = address
        self.state: dict[str, Any] = state if state is not None else {}

    def constructor(self, sender: str, *args: Any) -> None:
        if args:
            raise RevertError(
                f"{type(self).__name__} constructor takes no arguments, got {len(args)}"
            )

    def invoke(self, sender: str, method: str, args: list[Any], *, static: bool) -> Any:
        try:
            attr, is_view = self._abi[method]
        except KeyError:
            raise RevertError(
                f"{self.NAME or type(self).__name__} at {self.address} has no "
                f"function '{method}'"
            ) from None
        if static and not is_view:
            raise RevertError(f"'{method}' is not a view function")
        try:
            return getattr(self, attr)(sender, *args)
        except TypeError as exc:
            raise RevertError(f"bad arguments for '{method}': {exc}") from exc

    def contract_at(self, address: str) -> SimulatedContract:
        """Another contract on the same chain, for cross-contract calls."""
        return self.chain.contract_at(address)


class StorageContract(SimulatedContract):
    """Generic key/value contract used for contracts with no behaviour."""

    NAME = "Storage"

    def constructor(self, sender: str, *args: Any) -> None:
        self.state["owner"] = sender.lower()
        self.state["args"] = list(args)
        self.state["values"] = {}

    @external("set")
    def set_value(self, sender: str, key: str, value: Any) -> None:
        self.state["values"][str(key)] = value

    @view("get")
    def get_value(self, sender: str, key: str) -> Any:
        return self.state["values"].get(str(key))

    @view()
    def owner(self, sender: str) -> str:
        return self.state["owner"]


# ---------------------------------------------------------------------------
# Fault injection
# ---------------------------------------------------------------------------


class _Fault:
    def __init__(
        self,
        error: BaseException,
        operation: str,
        method: str | None,
        times: int,
        landed: bool,
    ) -> None:
        self.error = error
        self.operation = operation
        self.method = method
        self.remaining = times
        self.landed = landed

    def matches(self, operation: str, method: str | None) -> bool:
        if self.remaining <= 0:
            return False
        if self.operation not in ("*", operation):
            return False
        return self.method is None or self.method == method


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------


class LocalChain:
    """A deterministic, single-process chain.

    Parameters
    ----------
    contract_types:
        ``SimulatedContract`` subclasses to register by their ``NAME``.
    chain_id:
        Chain id mixed into transaction hashes.
    signer_count:
        Number of deterministic signer accounts.
    snapshot_path:
        If set, the chain saves itself here after every state change.
    """

    def __init__(
        self,
        contract_types: Iterable[type[SimulatedContract]] = (),
        *,
        chain_id: int = DEFAULT_CHAIN_ID,
        signer_count: int = SIGNER_COUNT,
        snapshot_path: Path | None = None,
    ) -> None:
        self.chain_id = chain_id
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self._signers = [signer_address(i) for i in range(signer_count)]
        self._types: dict[str, type[SimulatedContract]] = {}
        self._contracts: dict[str, SimulatedContract] = {}
        self._codes: dict[str, str] = {}
        self._nonces: dict[str, int] = {}
        self._faults: list[_Fault] = []
        self.block_number = 0
        self.deploy_count = 0
        self.transactions: list[TxReceipt] = []
        for cls in contract_types:
            self.register(cls)

    def register(self, cls: type[SimulatedContract]) -> None:
        if not cls.NAME:
            raise ValueError(f"{cls.__name__} has no NAME")
        self._types[cls.NAME] = cls

    # ------------------------------------------------------------------
    # NetworkClient protocol
    # ------------------------------------------------------------------

    def accounts(self) -> list[str]:
        return list(self._signers)

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
        fault = self._take_fault("deploy", contract)
        if fault is not None and not fault.landed:
            raise fault.error

        sender = sender.lower()
        code_fp = code_fingerprint(code)
        if deterministic:
            address = deterministic_address(
                sender, code_fp, args_fingerprint(contract, args, sender, True)
            )
            if address in self._contracts:
                if self._codes[address] != code_fp:
                    raise RevertError(f"create2 collision at {address}")
                logger.debug("%s already deployed at %s, reusing.", contract, address)
                if fault is not None:
                    raise fault.error
                return DeployReceipt(address=address)
        else:
            address = nonce_address(sender, self._nonces.get(sender, 0))

        cls = self._types.get(contract, StorageContract)
        instance = cls(self, address)
        tx_hash = self._tx_hash(sender, "", "constructor", [contract, *args])
        snapshot = self._snapshot_states()
        self._contracts[address] = instance
        self._codes[address] = code_fp
        try:
            instance.constructor(sender, *args)
        except BaseException:
            self._contracts.pop(address, None)
            self._codes.pop(address, None)
            self._restore_states(snapshot)
            raise
        self._bump(sender)
        self.deploy_count += 1
        logger.debug("Deployed %s at %s (tx %s)", contract, address, tx_hash[:10])
        self._persist()

        if fault is not None:
            raise fault.error
        return DeployReceipt(address=address, transaction_hash=tx_hash)

    def transact(
        self,
        *,
        sender: str,
        to: str,
        method: str,
        args: list[Any],
        timeout: float,
    ) -> TxReceipt:
        fault = self._take_fault("transact", method)
        if fault is not None and not fault.landed:
            raise fault.error

        sender = sender.lower()
        target = self.contract_at(to)
        tx_hash = self._tx_hash(sender, target.address, method, args)
        snapshot = self._snapshot_states()
        try:
            result = target.invoke(sender, method, list(args), static=False)
        except BaseException:
            self._restore_states(snapshot)
            raise
        self._bump(sender)
        receipt = TxReceipt(
            transaction_hash=tx_hash,
            to=target.address,
            method=method,
            return_value=result,
        )
        self.transactions.append(receipt)
        self._persist()

        if fault is not None:
            raise fault.error
        return receipt

    def call(
        self,
        *,
        to: str,
        method: str,
        args: list[Any],
        timeout: float,
    ) -> Any:
        fault = self._take_fault("call", method)
        if fault is not None:
            raise fault.error
        return self.contract_at(to).invoke("", method, list(args), static=True)

    # ------------------------------------------------------------------
    # Inspection and test hooks
    # ------------------------------------------------------------------

    def contract_at(self, address: str) -> SimulatedContract:
        try:
            return self._contracts[address.lower()]
        except KeyError:
            raise RevertError(f"no contract at {address}") from None

    def has_contract(self, address: str) -> bool:
        return address.lower() in self._contracts

    @property
    def contract_count(self) -> int:
        return len(self._contracts)

    def transactions_to(self, address: str, method: str | None = None) -> list[TxReceipt]:
        address = address.lower()
        return [
            tx for tx in self.transactions
            if tx.to == address and (method is None or tx.method == method)
        ]

    def inject_fault(
        self,
        error: BaseException | None = None,
        *,
        operation: str = "*",
        method: str | None = None,
        times: int = 1,
        landed: bool = False,
    ) -> None:
        """Make the next matching operation(s) fail.

        Parameters
        ----------
        error:
            Exception to raise (default ``NetworkTimeoutError``).
        operation:
            ``"deploy"``, ``"transact"``, ``"call"`` or ``"*"``.
        method:
            Only fail calls of this method (or deployments of this contract).
        times:
            How many matching operations fail.
        landed:
            If true the operation takes effect before the error is raised,
            like a timeout that fires after the transaction was mined.
        """
        if error is None:
            error = NetworkTimeoutError(
                f"simulated timeout in {operation} {method or ''}".strip()
            )
        self._faults.append(_Fault(error, operation, method, times, landed))

    def clear_faults(self) -> None:
        self._faults.clear()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "signers": list(self._signers),
            "block_number": self.block_number,
            "deploy_count": self.deploy_count,
            "nonces": dict(self._nonces),
            "contracts": {
                address: {
                    "contract": contract.NAME,
                    "code_fingerprint": self._codes[address],
                    "state": contract.state,
                }
                for address, contract in self._contracts.items()
            },
        }

    def save(self, path: Path) -> None:
        """Write a JSON snapshot of the chain."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(self.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(path)

    def _persist(self) -> None:
        if self.snapshot_path is not None:
            self.save(self.snapshot_path)

    @classmethod
    def load(
        cls,
        path: Path,
        contract_types: Iterable[type[SimulatedContract]] = (),
        *,
        chain_id: int | None = None,
    ) -> LocalChain:
        """Load a snapshot written by ``save``; a missing file gives a fresh chain.

        The returned chain keeps saving itself to ``path``.

        Raises
        ------
        ChainMismatchError
            If ``chain_id`` is given and the snapshot was taken on another chain.
        """
        path = Path(path)
        types = list(contract_types)
        if not path.exists():
            return cls(types, chain_id=chain_id or DEFAULT_CHAIN_ID, snapshot_path=path)
        data = json.loads(path.read_text(encoding="utf-8"))
        if chain_id is not None and data["chain_id"] != chain_id:
            raise ChainMismatchError(
                f"Chain state at {path} is for chain id {data['chain_id']}, "
                f"but chain id {chain_id} is configured",
                details={"path": str(path), "snapshot_chain_id": data["chain_id"]},
            )
        chain = cls(
            types,
            chain_id=data["chain_id"],
            signer_count=len(data["signers"]),
            snapshot_path=path,
        )
        chain.block_number = data["block_number"]
        chain.deploy_count = data["deploy_count"]
        chain._nonces = dict(data["nonces"])
        for address, entry in data["contracts"].items():
            impl = chain._types.get(entry["contract"], StorageContract)
            chain._contracts[address] = impl(chain, address, entry["state"])
            chain._codes[address] = entry["code_fingerprint"]
        logger.debug(
            "Loaded chain snapshot %s: %d contract(s) at block %d",
            path, len(chain._contracts), chain.block_number,
        )
        return chain

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _take_fault(self, operation: str, method: str | None) -> _Fault | None:
        for fault in self._faults:
            if fault.matches(operation, method):
                fault.remaining -= 1
                return fault
        return None

    def _tx_hash(self, sender: str, to: str, method: str, args: list[Any]) -> str:
        payload = {
            "chain_id": self.chain_id,
            "from": sender,
            "nonce": self._nonces.get(sender, 0),
            "to": to,
            "method": method,
            "args": args,
        }
        return "0x" + sha256_hex(canonical_json_bytes(payload))

    def _bump(self, sender: str) -> None:
        self._nonces[sender] = self._nonces.get(sender, 0) + 1
        self.block_number += 1

    def _snapshot_states(self) -> dict[str, dict[str, Any]]:
        return {a: copy.deepcopy(c.state) for a, c in self._contracts.items()}

    def _restore_states(self, snapshot: dict[str, dict[str, Any]]) -> None:
        for address, state in snapshot.items():
            self._contracts[address].state = state
