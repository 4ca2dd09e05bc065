# src/convocore/config/models.py
"""
Engine configuration models.

This module defines Pydantic models for every configuration section of
the conversation engine. The same defaults ship in
``default_config.toml`` as top-level tables; ``load_config``
merges that file with user files, environment variables and overrides
and validates the result into an :class:`EngineConfig`.

The configuration hierarchy:
    EngineConfig (root)
    ├── BlockLimitsConfig   - Size limits of the four memory blocks
    ├── RelevanceConfig     - Context ranking windows and strategy weights
    ├── SessionConfig       - Phase thresholds and advisory flag triggers
    ├── SyncConfig          - Write pool, retries, deadline, summary cadence
    └── UpstreamConfig      - Reasoning service endpoint

Usage:
    >>> from convocore.config.models import EngineConfig
    >>> config = EngineConfig()
    >>> config.sync.pool_size
    5
"""

from __future__ import annotations

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from ..models import MemoryBlock

# =============================================================================
# MEMORY BLOCK LIMITS
# =============================================================================


class BlockLimitsConfig(BaseModel):
    """
    Character limits of the memory blocks.

    Examples:
        >>> BlockLimitsConfig().limit_for(MemoryBlock.ACTIVE_SESSION)
        4000
    """

    conversation_history: int = Field(default=32000, ge=500, description="Limit of the full history block")
    active_session: int = Field(default=4000, ge=200, description="Limit of the active session digest")
    context_summary: int = Field(default=8000, ge=200, description="Limit of the rolling summary block")
    memory_metadata: int = Field(default=2000, ge=200, description="Limit of the usage metadata block")
    rotation_threshold: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Fraction of the history limit at which rotation is flagged",
    )

    def limit_for(self, block: MemoryBlock) -> int:
        return int(getattr(self, MemoryBlock(block).value))


# =============================================================================
# RELEVANCE RANKING
# =============================================================================


class StrategyWeights(BaseModel):
    """Multipliers applied to each strategy score before taking the maximum."""

    recency: float = Field(default=1.0, ge=0.0, le=1.0)
    topic: float = Field(default=0.8, ge=0.0, le=1.0)
    medical: float = Field(default=0.9, ge=0.0, le=1.0)
    emotional: float = Field(default=0.7, ge=0.0, le=1.0)
    follow_up: float = Field(default=0.95, ge=0.0, le=1.0)


class RelevanceConfig(BaseModel):
    """Configuration of the relevance ranker."""

    recent_turns_window: int = Field(default=5, ge=1, le=100, description="Turns considered by the recency strategy")
    max_relevant_turns: int = Field(default=10, ge=1, le=100, description="Maximum number of turns selected as context")
    weights: StrategyWeights = Field(default_factory=StrategyWeights)
    topic_match_boost: float = Field(default=0.3, ge=0.0, le=1.0, description="Bonus when a turn's topic tag appears in the message")
    recency_decay: float = Field(default=0.1, ge=0.0, le=1.0, description="Score lost per turn of distance")
    minimum_score: float = Field(default=0.1, ge=0.0, le=1.0, description="Floor for recency and empty-set scores")
    follow_up_increment: float = Field(default=0.3, ge=0.0, le=1.0, description="Score added per follow-up indicator found")


# =============================================================================
# SESSION STATE
# =============================================================================


class SessionConfig(BaseModel):
    """Phase thresholds and advisory flag triggers."""

    phase_thresholds: Dict[str, int] = Field(
        default_factory=lambda: {
            "Initial Assessment": 2,
            "Information Gathering": 5,
            "Active Discussion": 10,
            "Extended Consultation": 20,
        },
        description="Inclusive upper turn bound per phase, evaluated in ascending order",
    )
    final_phase: str = Field(default="Deep Engagement", description="Phase once every threshold is exceeded")
    archival_trigger_turns: int = Field(default=50, ge=1, description="Turns after which archival is advised")
    long_running_minutes: int = Field(default=60, ge=1, description="Duration after which a session is long-running")
    quality_issue_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    resolution_min_turns: int = Field(default=3, ge=1)
    resolution_quality: float = Field(default=0.7, ge=0.0, le=1.0)
    high_complexity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    @field_validator("phase_thresholds")
    @classmethod
    def thresholds_increase(cls, v: Dict[str, int]) -> Dict[str, int]:
        bounds = list(v.values())
        if bounds != sorted(bounds) or len(set(bounds)) != len(bounds):
            raise ValueError("phase thresholds must be strictly increasing")
        return v


# =============================================================================
# MEMORY SYNCHRONIZATION
# =============================================================================


class SyncConfig(BaseModel):
    """Configuration of the memory synchronization coordinator."""

    pool_size: int = Field(default=5, ge=1, le=64, description="Maximum concurrent block writes")
    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts per block before giving up")
    base_delay_seconds: float = Field(default=1.0, ge=0.0, description="Backoff base; delay doubles per attempt")
    timeout_seconds: float = Field(default=30.0, gt=0.0, description="Deadline for all writes of one turn")
    summary_every_n_turns: int = Field(default=3, ge=1, description="Cadence of the context summary block")
    high_quality_threshold: float = Field(default=0.8, ge=0.0, le=1.0, description="Quality that forces a summary write")
    enable_rollback: bool = Field(default=True, description="Restore last-known-good content after a partial sync")


# =============================================================================
# UPSTREAM REASONING SERVICE
# =============================================================================


class UpstreamConfig(BaseModel):
    """Connection settings for the HTTP reasoning client."""

    base_url: str = Field(default="http://localhost:8283", description="Base URL of the reasoning service")
    api_key_env: Optional[str] = Field(default="CONVOCORE_UPSTREAM_API_KEY", description="Environment variable holding the API key")
    request_timeout_seconds: float = Field(default=60.0, gt=0.0)

    @property
    def api_key(self) -> Optional[str]:
        if not self.api_key_env:
            return None
        return os.environ.get(self.api_key_env)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


# =============================================================================
# ROOT
# =============================================================================


class EngineConfig(BaseModel):
    """Root configuration of the conversation engine."""

    log_level: str = Field(default="INFO", description="Level of the 'convocore' logger")
    blocks: BlockLimitsConfig = Field(default_factory=BlockLimitsConfig)
    relevance: RelevanceConfig = Field(default_factory=RelevanceConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
