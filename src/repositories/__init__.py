"""
Repository layer for data access.
"""
from .call_repo import CallRepository
from .business_repo import BusinessRepository

__all__ = [
    "CallRepository",
    "BusinessRepository",
]
