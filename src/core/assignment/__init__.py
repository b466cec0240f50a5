# src/core/assignment/__init__.py
"""
Домен назначения.
Атомарное принятие ставки и создание рейса.
"""

from src.core.assignment.service import AssignmentResult, AssignmentService

__all__ = [
    "AssignmentResult",
    "AssignmentService",
]
