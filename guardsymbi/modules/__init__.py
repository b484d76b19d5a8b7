"""
Modules - registry of external module operations
"""

from .registry import (
    OperationResult,
    OperationSpec,
    OperationRegistry,
    import_operations,
)

__all__ = [
    "OperationResult",
    "OperationSpec",
    "OperationRegistry",
    "import_operations",
]
