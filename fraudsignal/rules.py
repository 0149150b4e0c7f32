import logging
import re
import yaml
from typing import Dict, Any, List, Tuple, Iterable, Optional

from pydantic import ValidationError

from .models import Pattern, PatternMatch, RecommendedAction, ReputationEntry, RiskLevel

logger = logging.getLogger("fraudsignal.rules")

# Risk level breakpoints, shared by every verdict producer
RISK_LEVELS: List[Tuple[RiskLevel, int, int]] = [
    (RiskLevel.MINIMAL, 0, 19),
    (RiskLevel.LOW, 20, 39),
    (RiskLevel.MEDIUM, 40, 69),
    (RiskLevel.HIGH, 70, 89),
    (RiskLevel.CRITICAL, 90, 100),
]
FRAUD_THRESHOLD = 40


class PatternFileError(RuntimeError):
    pass


def clamp_score(score: float) -> int:
    return int(max(0, min(100, round(score))))

def map_to_risk_level(score: float, levels: List[Tuple[RiskLevel, int, int]] = RISK_LEVELS) -> RiskLevel:
    score = clamp_score(score)
    for level, lo, hi in levels:
        if lo <= score <= hi:
            return level
    return RiskLevel.CRITICAL

def is_fraud_score(score: float) -> bool:
    return clamp_score(score) >= FRAUD_THRESHOLD


# ---- Narrative ----
ALERT_HEADLINES: Dict[RiskLevel, str] = {
    RiskLevel.CRITICAL: "CRITICAL THREAT: This content could steal your personal information or money!",
    RiskLevel.HIGH: "HIGH RISK: Multiple signs of a scam or phishing attempt.",
    RiskLevel.MEDIUM: "CAUTION: Suspicious elements that require verification.",
    RiskLevel.LOW: "INFO: Minor suspicious indicators detected.",
    RiskLevel.MINIMAL: "No significant risk detected.",
}

RECOMMENDED_ACTIONS: Dict[str, List[str]] = {
    "critical": [
        "DO NOT click any links, answer or call back",
        "Delete the message or reject the call",
        "Block the sender",
        "Report to authorities if it claims to be from a bank or government",
        "Never share personal information",
    ],
    "high": [
        "Do not click any links",
        "Verify the sender through official channels",
        "Do not provide personal information",
        "Consider blocking the sender",
        "Report if claiming to be from a legitimate organization",
    ],
    "medium": [
        "Verify the sender before taking any action",
        "Be cautious with any links or attachments",
        "Contact the organization directly if in doubt",
        "Do not provide sensitive information",
    ],
    "low": [
        "Exercise normal caution",
        "Verify any unusual requests",
        "Be aware of potential risks",
    ],
}

KNOWN_SCAMMER_ACTIONS: List[str] = [
    "DO NOT answer this call",
    "This number is confirmed to be used by scammers",
    "Block immediately",
    "Report any contact to authorities",
    "Never share personal information with this caller",
]

def compose_alert_message(level: RiskLevel, risk_factors: List[str]) -> str:
    message = ALERT_HEADLINES[level]
    if risk_factors:
        message += f" Main concerns: {', '.join(risk_factors[:2])}."
    return message

def recommended_action_for(level: RiskLevel) -> RecommendedAction:
    key = level.value if level.value in RECOMMENDED_ACTIONS else "low"
    return RecommendedAction(instructions=list(RECOMMENDED_ACTIONS[key]))


# ---- Pattern rules ----
class PatternEngine:
    """Compiles pattern rules and matches them against text."""

    def __init__(self):
        self._compiled: Dict[str, Optional[re.Pattern]] = {}

    def _regex(self, pattern: Pattern) -> Optional[re.Pattern]:
        key = pattern.expression
        if key not in self._compiled:
            try:
                self._compiled[key] = re.compile(key, re.IGNORECASE)
            except re.error:
                # fall back to literal containment
                logger.warning("Pattern %s is not a valid regex, matching literally", pattern.id)
                self._compiled[key] = None
        return self._compiled[key]

    def matches(self, pattern: Pattern, text: str) -> bool:
        if not text:
            return False
        if pattern.matcher == "regex":
            regex = self._regex(pattern)
            if regex is not None:
                return regex.search(text) is not None
        return pattern.expression.lower() in text.lower()

    def apply(self, patterns: Iterable[Pattern], text: str, applies_to: Iterable[str]) -> List[PatternMatch]:
        kinds = set(applies_to)
        hits: List[PatternMatch] = []
        for p in patterns:
            if not p.active or p.applies_to not in kinds:
                continue
            if self.matches(p, text):
                hits.append(PatternMatch(
                    pattern_id=p.id,
                    category=p.category,
                    risk_weight=p.risk_weight,
                    confidence=p.confidence,
                ))
        return hits


def _read_yaml(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except Exception as e:
        raise PatternFileError(f"Failed to load rules from {path}: {e}")

def load_patterns(path: str) -> List[Pattern]:
    data = _read_yaml(path)
    patterns: List[Pattern] = []
    for raw in data.get("patterns", []):
        if not isinstance(raw, dict):
            continue
        try:
            patterns.append(Pattern.model_validate(raw))
        except ValidationError as e:
            logger.warning("Skipping invalid pattern %s: %s", raw.get("id"), e)
    return patterns

def load_known_fraud(path: str) -> List[ReputationEntry]:
    data = _read_yaml(path)
    entries: List[ReputationEntry] = []
    for raw in data.get("known_fraud", []):
        if not isinstance(raw, dict):
            continue
        try:
            entries.append(ReputationEntry.model_validate({**raw, "classification": "known-fraud"}))
        except ValidationError as e:
            logger.warning("Skipping invalid reputation entry %s: %s", raw.get("identifier"), e)
    return entries
