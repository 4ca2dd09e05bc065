# src/convocore/models.py
"""
Core data models for the convocore library.

This module defines the Pydantic models used to represent conversation
turns, session histories, context enrichment results, response quality
metadata, session state and lifecycle transitions, cross-session
continuity records and the outcome of memory synchronization.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _ensure_utc(v: Any) -> Any:
    if isinstance(v, str):
        v = datetime.fromisoformat(v[:-1] + "+00:00" if v.endswith("Z") else v)
    if isinstance(v, datetime):
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)
    return v


class _CaseInsensitiveEnum(str, Enum):
    @classmethod
    def _missing_(cls, value: object):  # type: ignore[misc]
        """Handle case-insensitive matching of enum values."""
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.lower():
                    return member
        return None


# =============================================================================
# Enumerations
# =============================================================================


class SessionStatus(_CaseInsensitiveEnum):
    """Lifecycle states of a conversation session."""
    INITIALIZING = "INITIALIZING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ENDED = "ENDED"
    ARCHIVED = "ARCHIVED"


class TransitionType(_CaseInsensitiveEnum):
    """Kinds of lifecycle transitions; one per legal edge of the state machine."""
    INITIALIZATION = "INITIALIZATION"
    ACTIVATION = "ACTIVATION"
    PAUSE = "PAUSE"
    RESUME = "RESUME"
    TERMINATION = "TERMINATION"
    ARCHIVAL = "ARCHIVAL"


class TriggerSource(_CaseInsensitiveEnum):
    """What caused a lifecycle transition."""
    USER = "USER"
    SYSTEM = "SYSTEM"
    TIMEOUT = "TIMEOUT"
    ERROR = "ERROR"


class EngagementLevel(_CaseInsensitiveEnum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"


class MemoryBlock(_CaseInsensitiveEnum):
    """The four redundant memory views kept for every session."""
    CONVERSATION_HISTORY = "conversation_history"
    ACTIVE_SESSION = "active_session"
    CONTEXT_SUMMARY = "context_summary"
    MEMORY_METADATA = "memory_metadata"


class SyncStatus(_CaseInsensitiveEnum):
    SYNCHRONIZED = "SYNCHRONIZED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class Intent(_CaseInsensitiveEnum):
    """Coarse intent classes used to choose the responding agent."""
    GENERAL_HEALTH = "GENERAL_HEALTH"
    MENTAL_HEALTH = "MENTAL_HEALTH"
    EMERGENCY = "EMERGENCY"


# =============================================================================
# Turns and histories
# =============================================================================


class QualityMetadata(BaseModel):
    """
    Analysis of one agent reply, produced by a ResponseAnalyzer.

    All scores are in [0, 1].
    """
    model_config = ConfigDict(frozen=True)

    quality: float = Field(default=0.5, ge=0.0, le=1.0, description="Overall response quality.")
    context_relevance: float = Field(default=0.5, ge=0.0, le=1.0, description="How much of the supplied context the reply used.")
    confidence: float = Field(default=0.5, ge=0.0, le=1.0, description="Assertiveness of the reply.")
    medical_accuracy: float = Field(default=0.7, ge=0.0, le=1.0)
    emotional_appropriateness: float = Field(default=0.6, ge=0.0, le=1.0)
    sentiment: str = Field(default="Neutral", description="Empathetic, Professional, Cautionary or Neutral.")
    topics: List[str] = Field(default_factory=list, description="Topics the reply addressed.")
    patterns: str = Field(default="Standard response pattern", description="Recognised response patterns.")
    addressed_concern: bool = False
    requires_follow_up: bool = False
    agent_type: Optional[str] = None
    medical_advice_level: str = Field(default="None", description="Specific, General, Referral or None.")
    safety_warnings: bool = False
    context_utilization: str = ""
    context_feedback: str = ""

    @property
    def overall_effectiveness(self) -> float:
        return (self.quality + self.context_relevance + self.confidence) / 3.0

    @property
    def quality_level(self) -> str:
        effectiveness = self.overall_effectiveness
        if effectiveness >= 0.8:
            return "Excellent"
        if effectiveness >= 0.6:
            return "Good"
        if effectiveness >= 0.4:
            return "Fair"
        return "Poor"


class ConversationPatterns(BaseModel):
    """Aggregate view of how a session has evolved so far."""
    topic_frequency: Dict[str, int] = Field(default_factory=dict)
    topic_progression: List[str] = Field(default_factory=list)
    agent_routing: Dict[str, int] = Field(default_factory=dict)
    emotional_progression: List[str] = Field(default_factory=list)
    current_phase: str = "Session Initialization"
    increasing_complexity: bool = False
    topic_shift_detected: bool = False
    depth: int = 0
    total_turns: int = 0
    session_duration: str = "Less than 1 minute"


class ContextEnrichmentResult(BaseModel):
    """
    Output of context enrichment for a single turn.

    Attributes:
        selected_turn_numbers: Prior turns judged relevant, ascending.
        confidence: Mean relevance of the selected turns, or a fixed sentinel.
        composed_text: The enriched message passed to the reasoning service.
        reasoning: Human-readable explanation of the selection.
        context_used: Short digest of the selected turns.
    """
    model_config = ConfigDict(frozen=True)

    selected_turn_numbers: List[int] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    composed_text: str
    reasoning: str
    context_used: str = ""
    patterns: Optional[ConversationPatterns] = None

    @property
    def relevant_turn_count(self) -> int:
        return len(self.selected_turn_numbers)


class Turn(BaseModel):
    """
    One user message and the agent reply to it.

    Turns are immutable snapshots; the ledger replaces a pending turn with
    its completed copy exactly once.
    """
    model_config = ConfigDict(frozen=True)

    session_id: str = Field(description="Session this turn belongs to.")
    turn_number: int = Field(ge=1, description="Gapless, 1-based position in the session.")
    user_message: str
    agent_response: Optional[str] = None
    topic_tag: Optional[str] = None
    emotional_state: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    intent: Optional[Intent] = None
    intent_confidence: Optional[float] = None
    routed_agent: Optional[str] = None
    enrichment: Optional[ContextEnrichmentResult] = None
    quality_metadata: Optional[QualityMetadata] = None
    context_correlation: Optional[float] = None
    archived: bool = False

    @field_validator("timestamp", mode="before")
    @classmethod
    def ensure_utc_timestamp(cls, v: Any) -> datetime:
        return _ensure_utc(v)

    @property
    def is_complete(self) -> bool:
        return self.agent_response is not None

    @property
    def text(self) -> str:
        """User message and agent reply, as scored by relevance strategies."""
        if self.agent_response:
            return f"{self.user_message} {self.agent_response}"
        return self.user_message

    @property
    def has_high_quality_response(self) -> bool:
        return self.quality_metadata is not None and self.quality_metadata.quality >= 0.8


class ConversationHistory(BaseModel):
    """Ordered snapshot of every turn recorded for a session."""
    session_id: str
    user_id: str
    status: SessionStatus = SessionStatus.ACTIVE
    turns: List[Turn] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_updated: datetime = Field(default_factory=utc_now)

    @computed_field  # type: ignore[misc]
    @property
    def total_turns(self) -> int:
        return len(self.turns)

    def get_turn(self, turn_number: int) -> Optional[Turn]:
        if 1 <= turn_number <= len(self.turns):
            return self.turns[turn_number - 1]
        return None

    def recent_turns(self, count: int) -> List[Turn]:
        return self.turns[-count:] if count > 0 else []


# =============================================================================
# Session state
# =============================================================================


class SessionQuality(BaseModel):
    overall: float = 0.8
    context_continuity: float = 0.5
    agent_performance: float = 0.8
    user_satisfaction: float = 0.5
    notes: str = ""


class MemoryUsageStats(BaseModel):
    conversation_history_size: int = 0
    active_session_size: int = 0
    context_summary_size: int = 0
    memory_metadata_size: int = 0
    efficiency: float = 1.0
    rotation_triggered: bool = False
    archival_trigger_turns: int = 50


class UserEngagement(BaseModel):
    average_message_length: float = 0.0
    questions_asked: int = 0
    active_participation: bool = False
    level: EngagementLevel = EngagementLevel.UNKNOWN


class AgentInteraction(BaseModel):
    agent_type: str
    turn_number: int
    interaction_time: datetime = Field(default_factory=utc_now)
    intent_handled: Optional[str] = None
    response_quality: Optional[float] = None
    handoff_occurred: bool = False


class SessionClosure(BaseModel):
    reason: str
    proper_closure: bool = True
    final_topic: Optional[str] = None
    resolution_achieved: bool = False
    notes: str = ""
    recommended_follow_ups: List[str] = Field(default_factory=list)


class ArchivalMetadata(BaseModel):
    is_archived: bool = True
    archived_at: datetime = Field(default_factory=utc_now)
    reason: str = ""
    accessible_for_continuity: bool = True


class SessionState(BaseModel):
    """
    Live lifecycle and quality view of a session.

    Owned by the SessionManager and persisted through the injected store.
    ``flags`` carries advisory indicators such as ``archivalRequired``.
    """
    model_config = ConfigDict(validate_assignment=True)

    session_id: str
    user_id: str
    status: SessionStatus = SessionStatus.INITIALIZING
    phase: str = "Session Initialization"
    complexity_score: float = Field(default=0.1, ge=0.0, le=1.0)
    engagement: UserEngagement = Field(default_factory=UserEngagement)
    quality: SessionQuality = Field(default_factory=SessionQuality)
    memory_usage: MemoryUsageStats = Field(default_factory=MemoryUsageStats)
    flags: Dict[str, Union[bool, int, str, List[str]]] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    last_activity: datetime = Field(default_factory=utc_now)
    duration_minutes: int = 0
    total_turns: int = 0
    current_topic: str = "Initial Setup"
    primary_topics: List[str] = Field(default_factory=list)
    last_agent_type: Optional[str] = None
    agent_interactions: List[AgentInteraction] = Field(default_factory=list)
    related_session_ids: List[str] = Field(default_factory=list)
    requires_follow_up: bool = False
    preserved_context: Optional[str] = None
    closure: Optional[SessionClosure] = None
    archival: Optional[ArchivalMetadata] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def can_be_resumed(self) -> bool:
        return self.status == SessionStatus.PAUSED and self.archival is None

    @property
    def is_high_complexity(self) -> bool:
        return self.complexity_score > 0.8

    @property
    def effectiveness(self) -> float:
        return (self.quality.overall * 0.4
                + self.quality.context_continuity * 0.3
                + self.quality.agent_performance * 0.3)

    @property
    def summary(self) -> str:
        return (f"Session {self.session_id}: {self.status.value}, {self.total_turns} turns, "
                f"{self.phase} phase, {self.duration_minutes} min duration")


class SessionTransition(BaseModel):
    """Append-only record of one lifecycle edge."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    user_id: str
    from_status: Optional[SessionStatus] = None
    to_status: SessionStatus
    type: TransitionType
    reason: str = ""
    trigger_source: TriggerSource = TriggerSource.SYSTEM
    timestamp: datetime = Field(default_factory=utc_now)
    turn_number: int = 0
    success: bool = True
    automatic: bool = False
    preserved_context: Optional[str] = None
    memory_operation: Optional[str] = None

    @property
    def summary(self) -> str:
        source = self.from_status.value if self.from_status else "NONE"
        return f"{self.type.value}: {source} -> {self.to_status.value} ({self.reason})"


# =============================================================================
# Cross-session continuity
# =============================================================================


class SessionSummary(BaseModel):
    """Digest of an ended session, kept for continuity across sessions."""
    session_id: str
    started_at: datetime
    ended_at: datetime = Field(default_factory=utc_now)
    duration_minutes: int = 0
    total_turns: int = 0
    primary_topic: str = "General Health"
    topics: List[str] = Field(default_factory=list)
    resolution_achieved: bool = False
    last_agent_type: Optional[str] = None
    quality: float = 0.0


class ContinuityAnalytics(BaseModel):
    total_sessions: int = 0
    average_quality: float = 0.0
    resolutions_achieved: int = 0
    first_session_at: Optional[datetime] = None
    last_session_at: Optional[datetime] = None
    common_topics: List[str] = Field(default_factory=list)


class ContinuityRecord(BaseModel):
    """Per-user ledger of ended sessions."""
    user_id: str
    sessions: List[SessionSummary] = Field(default_factory=list)
    analytics: ContinuityAnalytics = Field(default_factory=ContinuityAnalytics)

    @property
    def has_established_patterns(self) -> bool:
        return len(self.sessions) >= 3

    @property
    def last_session(self) -> Optional[SessionSummary]:
        return self.sessions[-1] if self.sessions else None


# =============================================================================
# Memory synchronization
# =============================================================================


class BlockWriteOutcome(BaseModel):
    """Result of writing one memory block, including every retry."""
    block: MemoryBlock
    success: bool
    attempts: int = 0
    last_error: Optional[str] = None
    elapsed_seconds: float = 0.0
    content_length: int = 0


class MemorySyncResult(BaseModel):
    """
    Outcome of synchronizing the memory blocks for one turn.

    ``success`` is True only when every targeted block was written and every
    consistency check passed.
    """
    session_id: str
    turn_number: int
    status: SyncStatus
    targeted_block_ids: List[MemoryBlock] = Field(default_factory=list)
    updated_block_ids: List[MemoryBlock] = Field(default_factory=list)
    consistency_checks: Dict[str, bool] = Field(default_factory=dict)
    outcomes: List[BlockWriteOutcome] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    rollback_performed: bool = False
    context_correlation: float = 0.0
    context_improvements: str = ""
    optimization_suggestions: str = ""
    elapsed_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return (self.status == SyncStatus.SYNCHRONIZED
                and set(self.targeted_block_ids) <= set(self.updated_block_ids)
                and bool(self.consistency_checks)
                and all(self.consistency_checks.values()))


# =============================================================================
# Engine surface
# =============================================================================


class AgentMapping(BaseModel):
    """Identifiers of the agents serving one user."""
    user_id: str
    identity_id: str
    context_extractor_id: str
    general_health_id: str
    mental_health_id: str


class TurnReply(BaseModel):
    """What ``submit_turn`` returns to the caller."""
    session_id: str
    turn_number: int
    reply_text: str
    confidence: float
    relevant_turn_count: int
    context_confidence: float
    quality: float
    phase: str
    intent: Optional[Intent] = None
    routed_agent: Optional[str] = None
    upstream_failed: bool = False
    sync: Optional[MemorySyncResult] = None
