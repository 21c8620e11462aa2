"""
Utility modules for shared functionality.
"""
from .text_utils import strip_tool_call_fragments

__all__ = [
    "strip_tool_call_fragments",
]
