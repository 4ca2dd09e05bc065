# src/convocore/routing/__init__.py
"""
Intent routing for convocore.
"""

from .intent import (GENERAL_HEALTH_AGENT, MENTAL_HEALTH_AGENT,
                     IntentClassification, IntentRouter)

__all__ = [
    "GENERAL_HEALTH_AGENT",
    "IntentClassification",
    "IntentRouter",
    "MENTAL_HEALTH_AGENT",
]
