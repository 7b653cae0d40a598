"""
Miscellaneous Utilities for the Model Registry
==============================================

Filesystem and identifier helpers shared by the registry manager and the CLI:
timestamps, training-run ids, atomic JSON writes, directory sizing, flat copies
and guarded folder deletion.

Modules
-------
- utils_lib : UtilsLib class-method collection.
"""

from .utils_lib import UtilsLib

__all__ = ["UtilsLib"]
