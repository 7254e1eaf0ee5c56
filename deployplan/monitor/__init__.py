"""Rich terminal rendering of runs, plans, stored state and history."""

from deployplan.monitor.renderer import DeployRenderer

__all__ = ["DeployRenderer"]
