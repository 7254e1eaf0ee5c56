"""deployplan CLI: Typer-based command-line interface.

Provides the ``deployplan`` command with subcommands for deploying a plan,
previewing it, inspecting stored state and run history, and clearing a
stale run lock.

All output uses Rich for formatted terminal display.
"""
