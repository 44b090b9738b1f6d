"""Locate config.json and the last-used cache next to the script or the frozen executable."""

import os
import sys


def is_frozen() -> bool:
    """Check if running as a PyInstaller bundle."""
    return getattr(sys, "frozen", False)


def get_runtime_path() -> str:
    """
    Get the runtime path for user files (config, last-used cache).

    When running as a PyInstaller bundle, this returns the directory
    where the executable is located.
    When running normally, this returns the current working directory.
    """
    if is_frozen():
        return os.path.dirname(sys.executable)
    return os.getcwd()


def resolve_runtime_file(name: str) -> str:
    """Return ``name`` unchanged if absolute, otherwise relative to the runtime path."""
    if os.path.isabs(name):
        return name
    return os.path.join(get_runtime_path(), name)
