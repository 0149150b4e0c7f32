from enum import Enum
from typing import Optional, List, Dict, Any, Literal, Union, Annotated

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .feature_extractors import extract_urls


class WireModel(BaseModel):
    """snake_case attributes, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RiskLevel(str, Enum):
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Provenance(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    COMBINED = "combined"


class Classification(str, Enum):
    TRUSTED = "trusted"
    BLOCKED = "blocked"
    KNOWN_FRAUD = "known-fraud"


class ActionState(str, Enum):
    EVALUATED = "evaluated"
    ALERTED = "alerted"
    AUTO_BLOCKED = "auto_blocked"
    USER_BLOCKED = "user_blocked"
    USER_MARKED_SAFE = "user_marked_safe"
    IGNORED = "ignored"


# ---- Signals ----
class PhoneSignal(WireModel):
    kind: Literal["phone"] = "phone"
    number: str


class TextSignal(WireModel):
    kind: Literal["text"] = "text"
    sender: Optional[str] = None
    body: str = ""
    extracted_urls: Optional[List[str]] = None

    @model_validator(mode="after")
    def _fill_urls(self):
        if self.extracted_urls is None:
            self.extracted_urls = extract_urls(self.body)
        return self


Signal = Annotated[Union[PhoneSignal, TextSignal], Field(discriminator="kind")]


# ---- Stores ----
class Pattern(WireModel):
    id: str
    applies_to: Literal["text", "url", "phone"] = "text"
    matcher: Literal["regex", "literal"] = "regex"
    expression: str
    category: str
    risk_weight: int = Field(ge=0, le=100)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    active: bool = True
    description: Optional[str] = None


class ReputationEntry(WireModel):
    identifier: str
    kind: Literal["phone", "domain"] = "phone"
    classification: Classification
    risk_score: int = Field(default=0, ge=0, le=100)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ---- Verdicts ----
class PatternMatch(WireModel):
    pattern_id: str
    category: str
    risk_weight: int
    confidence: float = 0.5


class RecommendedAction(WireModel):
    instructions: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Verdict(WireModel):
    risk_score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    is_fraud: bool
    matched_patterns: List[PatternMatch] = Field(default_factory=list)
    risk_factors: List[str] = Field(default_factory=list)
    alert_message: str = ""
    recommended_action: Optional[RecommendedAction] = None
    provenance: Provenance = Provenance.LOCAL
    scam_type: Optional[str] = None
    report_count: Optional[int] = None


# ---- Actions ----
class Alert(WireModel):
    title: str
    body: str
    risk_level: RiskLevel
    identifier: Optional[str] = None
    actions: List[str]
    require_interaction: bool = True


class AutoBlock(WireModel):
    identifiers: List[str]


class LogEntry(WireModel):
    signal_kind: Literal["phone", "text"]
    identifier: Optional[str] = None
    event_type: str
    timestamp: str
    risk_level: RiskLevel
    risk_score: int
    is_fraud: bool
    provenance: Provenance = Provenance.LOCAL


class ActionDecision(WireModel):
    signal: Signal
    verdict: Verdict
    state: ActionState = ActionState.EVALUATED
    alert: Optional[Alert] = None
    auto_block: Optional[AutoBlock] = None
    log_entry: LogEntry


# ---- API ----
class DetectRequest(WireModel):
    phone_number: Optional[str] = None
    message: Optional[str] = None
    content: Optional[str] = None
    urls: Optional[List[str]] = None
    type: Optional[str] = None
    timestamp: Optional[str] = None

    def to_signal(self):
        body = self.message or self.content
        if body is not None or self.type == "sms_content":
            return TextSignal(sender=self.phone_number, body=body or "", extracted_urls=self.urls)
        if not self.phone_number:
            raise ValueError("phoneNumber or message is required")
        return PhoneSignal(number=self.phone_number)


class BulkDetectRequest(WireModel):
    items: List[DetectRequest]


class ReportRequest(DetectRequest):
    description: Optional[str] = None
    scam_type: Optional[str] = None
    report_type: Optional[str] = None


class IdentifierRequest(WireModel):
    identifier: str
    kind: Literal["phone", "domain"] = "phone"


class DatabaseUpdate(WireModel):
    known_fraud: Optional[List[Dict[str, Any]]] = None
    trusted: Optional[List[Dict[str, Any]]] = None
    blocked: Optional[List[Dict[str, Any]]] = None


class ProcessResponse(WireModel):
    verdict: Verdict
    decision: ActionDecision
