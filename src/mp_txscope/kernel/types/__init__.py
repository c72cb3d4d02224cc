"""Kernel value types – public re-export surface.

Modules:
  option.py    – Some, Nothing, Option
  isolation.py – IsolationLevel
"""

from mp_txscope.kernel.types.isolation import IsolationLevel
from mp_txscope.kernel.types.option import Nothing, Option, Some

__all__ = ["IsolationLevel", "Nothing", "Option", "Some"]
