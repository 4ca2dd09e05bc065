# src/convocore/sessions/__init__.py
"""
Session lifecycle for convocore.

Exposes the SessionManager, the continuity ledger and the pure state
machine functions they are built on.
"""

from .continuity import ContinuityStore
from .manager import SessionManager
from .state_machine import (TRANSITIONS, apply_transition, phase_for,
                            recompute_for_turn, transition_type)

__all__ = [
    "ContinuityStore",
    "SessionManager",
    "TRANSITIONS",
    "apply_transition",
    "phase_for",
    "recompute_for_turn",
    "transition_type",
]
