"""
Restore module for the JOAP backup engine.

Invariants:
    - A restore is a full replacement of every registered collection
    - A failed restore leaves the live datastore untouched
"""

from .executor import RestoreExecutor, RestoreReport

__all__ = ["RestoreExecutor", "RestoreReport"]
