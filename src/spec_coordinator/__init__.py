"""
spec-coordinator - package root.

Drives external coding agents (one lead, one or more validators) through
iterative implement-then-validate cycles per specification file, with durable
resumable session state.

Importing the package has no side effects: no config loading, no logging init.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
