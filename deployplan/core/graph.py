"""Deployment graph: the registry of units and their dependency edges.

The graph enforces:
- Unit ids are unique (``DuplicateIdError`` at registration).
- Every declared dependency is registered (``MissingDependencyError``).
- The dependency relation is acyclic (``CycleError``, reported in
  depth-first traversal order).

Validation runs before any execution and has no side effects.
"""

from __future__ import annotations

from collections import deque
from enum import Enum

from deployplan.core.errors import CycleError, DuplicateIdError, MissingDependencyError
from deployplan.models.units import DeploymentUnit, UnitHandle, UnitRef, ref_id


class _Mark(Enum):
    VISITING = 1
    VISITED = 2


class DeploymentGraph:
    """Registry of ``DeploymentUnit`` declarations.

    Units are registered once, at process start.  ``register`` returns a
    typed ``UnitHandle``; dependencies may reference units by handle or by
    a string id registered later, and are bound to handles by ``validate``.
    """

    def __init__(self, units: list[DeploymentUnit] | None = None) -> None:
        self._units: dict[str, DeploymentUnit] = {}
        self._handles: dict[str, UnitHandle] = {}
        # Bound after validate(): unit_id -> prerequisite handles, in declared order
        self._prerequisites: dict[str, tuple[UnitHandle, ...]] = {}
        self._dependents: dict[str, list[str]] = {}
        self._validated = False
        for unit in units or []:
            self.register(unit)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, unit: DeploymentUnit) -> UnitHandle:
        """Register a unit and return its handle."""
        if unit.id in self._units:
            raise DuplicateIdError(
                f"Unit '{unit.id}' is already registered", unit_id=unit.id
            )
        handle = UnitHandle(id=unit.id, ordinal=len(self._units))
        self._units[unit.id] = unit
        self._handles[unit.id] = handle
        self._validated = False
        return handle

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check dependency integrity and acyclicity, then bind handles."""
        for unit in self._units.values():
            for dep in unit.dependency_ids:
                if dep not in self._units:
                    raise MissingDependencyError(
                        f"Unit '{unit.id}' depends on unregistered unit '{dep}'",
                        unit_id=unit.id,
                        details={"missing": dep},
                    )
        self._check_acyclic()

        self._prerequisites = {
            uid: tuple(self._handles[dep] for dep in unit.dependency_ids)
            for uid, unit in self._units.items()
        }
        self._dependents = {uid: [] for uid in self._units}
        for uid, prereqs in self._prerequisites.items():
            for dep in prereqs:
                if uid not in self._dependents[dep.id]:
                    self._dependents[dep.id].append(uid)
        self._validated = True

    def _check_acyclic(self) -> None:
        """Depth-first search with visiting/visited marks."""
        marks: dict[str, _Mark] = {}
        path: list[str] = []

        def visit(uid: str) -> None:
            marks[uid] = _Mark.VISITING
            path.append(uid)
            for dep in self._units[uid].dependency_ids:
                mark = marks.get(dep)
                if mark is _Mark.VISITING:
                    raise CycleError(path[path.index(dep):])
                if mark is None:
                    visit(dep)
            path.pop()
            marks[uid] = _Mark.VISITED

        for uid in self._units:
            if uid not in marks:
                visit(uid)

    @property
    def is_validated(self) -> bool:
        return self._validated

    def _require_validated(self) -> None:
        if not self._validated:
            self.validate()

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, ref: object) -> bool:
        if isinstance(ref, (str, UnitHandle)):
            return ref_id(ref) in self._units
        return False

    @property
    def handles(self) -> list[UnitHandle]:
        """All handles in registration order."""
        return list(self._handles.values())

    def handle(self, ref: UnitRef) -> UnitHandle:
        """Return the handle for a unit id (or the handle itself)."""
        uid = ref_id(ref)
        try:
            return self._handles[uid]
        except KeyError:
            raise MissingDependencyError(
                f"Unit '{uid}' is not registered", unit_id=uid
            ) from None

    def unit(self, ref: UnitRef) -> DeploymentUnit:
        """Return the declaration for a unit."""
        return self._units[self.handle(ref).id]

    def get_prerequisites(self, ref: UnitRef) -> tuple[UnitHandle, ...]:
        """Direct dependencies of a unit, in declared order."""
        self._require_validated()
        return self._prerequisites[self.handle(ref).id]

    def get_dependents(self, ref: UnitRef) -> list[str]:
        """All transitive dependents of a unit (BFS)."""
        self._require_validated()
        result: list[str] = []
        queue = deque(self._dependents.get(self.handle(ref).id, []))
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(self._dependents.get(node, []))
        return result

    def dependency_closure(self, refs: list[UnitRef]) -> set[str]:
        """The given units plus all of their transitive dependencies."""
        self._require_validated()
        closure: set[str] = set()
        stack = [self.handle(ref).id for ref in refs]
        while stack:
            uid = stack.pop()
            if uid in closure:
                continue
            closure.add(uid)
            stack.extend(dep.id for dep in self._prerequisites[uid])
        return closure

    def select(self, tags: list[str] | None) -> set[str]:
        """Unit ids selected by a tag filter, including dependency closure.

        ``None`` or an empty filter selects every unit.
        """
        if not tags:
            return set(self._units)
        wanted = set(tags)
        roots: list[UnitRef] = [
            uid for uid, unit in self._units.items() if unit.matches_tags(wanted)
        ]
        return self.dependency_closure(roots)
