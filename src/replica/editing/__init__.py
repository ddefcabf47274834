"""
Local feature editing.
"""

from .edit_buffer import EditBuffer, CommitResult

__all__ = [
    "EditBuffer",
    "CommitResult",
]
