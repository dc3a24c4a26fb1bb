"""Service modules"""
from .orchestrator import BorrowFallback, PositionOrchestrator
from . import queries

__all__ = ["BorrowFallback", "PositionOrchestrator", "queries"]
