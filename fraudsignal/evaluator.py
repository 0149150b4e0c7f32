"""
Local evaluator: a Signal plus the pattern and reputation stores produce a
local Verdict. Phone and text signals share the same scoring primitives
(``_Score`` accumulation, clamping, level mapping, narrative composition).

Evaluation is total: malformed input contributes a fixed penalty, and any
unexpected failure is logged and yields a verdict instead of an exception.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from .feature_extractors import (
    MalformedURL,
    digits_only,
    has_repeated_run,
    has_sequential_run,
    normalize_phone,
    suspicious_url_reasons,
    tail_all_same,
    url_host,
)
from .models import (
    Classification,
    Pattern,
    PatternMatch,
    PhoneSignal,
    Provenance,
    RecommendedAction,
    ReputationEntry,
    TextSignal,
    Verdict,
)
from .rules import (
    FRAUD_THRESHOLD,
    KNOWN_SCAMMER_ACTIONS,
    PatternEngine,
    clamp_score,
    compose_alert_message,
    is_fraud_score,
    map_to_risk_level,
    recommended_action_for,
)
from .stores import ReputationStore

logger = logging.getLogger("fraudsignal.evaluator")

HIGH_RISK_PREFIXES: Tuple[str, ...] = ("+1900", "+1976", "+234", "+233", "+225")

# Phone structure penalties
REPEATED_DIGITS_PENALTY = 30
SEQUENTIAL_DIGITS_PENALTY = 25
SAME_TAIL_PENALTY = 40
MANY_ZEROS_PENALTY = 20
MANY_NINES_PENALTY = 20
SHORT_NUMBER_PENALTY = 35
LONG_NUMBER_PENALTY = 30
HIGH_RISK_PREFIX_PENALTY = 40

# Text penalties
SUSPICIOUS_SENDER_PENALTY = 40
BLOCKED_DOMAIN_PENALTY = 50
SUSPICIOUS_URL_PENALTY = 30
MALFORMED_URL_PENALTY = 20
LONG_MESSAGE_PENALTY = 10
MANY_LINKS_PENALTY = 15
LONG_MESSAGE_CHARS = 500
MANY_LINKS_COUNT = 3

_engine = PatternEngine()


class _Score:
    def __init__(self):
        self.total = 0
        self.factors: List[str] = []
        self.matches: List[PatternMatch] = []

    def add(self, points: int, factor: str) -> None:
        self.total += points
        self.factors.append(factor)

    def add_matches(self, matches: Iterable[PatternMatch]) -> None:
        for m in matches:
            self.matches.append(m)
            self.add(m.risk_weight, f"Detected {m.category} pattern")


def build_verdict(
    score: float,
    risk_factors: Sequence[str] = (),
    matched_patterns: Sequence[PatternMatch] = (),
    provenance: Provenance = Provenance.LOCAL,
    alert_message: Optional[str] = None,
    recommended_action: Optional[RecommendedAction] = None,
    scam_type: Optional[str] = None,
    report_count: Optional[int] = None,
) -> Verdict:
    risk_score = clamp_score(score)
    level = map_to_risk_level(risk_score)
    factors = list(risk_factors)
    return Verdict(
        risk_score=risk_score,
        risk_level=level,
        is_fraud=is_fraud_score(risk_score),
        matched_patterns=list(matched_patterns),
        risk_factors=factors,
        alert_message=alert_message if alert_message is not None else compose_alert_message(level, factors),
        recommended_action=recommended_action or recommended_action_for(level),
        provenance=provenance,
        scam_type=scam_type,
        report_count=report_count,
    )


# ---------------------------------------------------------------------------
# Phone signals
# ---------------------------------------------------------------------------

def score_number_structure(number: str, high_risk_prefixes: Iterable[str] = HIGH_RISK_PREFIXES) -> _Score:
    """Sum every structural penalty the number triggers; no short-circuit."""
    s = _Score()
    clean = normalize_phone(number)
    digits = digits_only(clean)

    if has_repeated_run(digits):
        s.add(REPEATED_DIGITS_PENALTY, "Contains many repeated digits")
    if has_sequential_run(digits):
        s.add(SEQUENTIAL_DIGITS_PENALTY, "Contains sequential digits")
    if digits and tail_all_same(digits):
        s.add(SAME_TAIL_PENALTY, "Contains all same digits")
    if digits.count("0") >= 4:
        s.add(MANY_ZEROS_PENALTY, "Contains many zeros")
    if digits.count("9") >= 4:
        s.add(MANY_NINES_PENALTY, "Contains many nines")
    if len(digits) < 7:
        s.add(SHORT_NUMBER_PENALTY, "Unusually short number")
    if len(digits) > 15:
        s.add(LONG_NUMBER_PENALTY, "Unusually long number")
    if any(clean.startswith(prefix) for prefix in high_risk_prefixes):
        s.add(HIGH_RISK_PREFIX_PENALTY, "Number from high-risk region")
    return s


def _known_fraud_verdict(entry: ReputationEntry, structure: _Score) -> Verdict:
    meta = entry.metadata
    description = meta.get("description") or "Reported fraud number"
    score = max(entry.risk_score, structure.total, FRAUD_THRESHOLD)
    factors = [f"Known fraud number: {description}"] + structure.factors
    return build_verdict(
        score,
        risk_factors=factors,
        matched_patterns=structure.matches,
        alert_message=f"KNOWN SCAMMER: {description}",
        recommended_action=RecommendedAction(
            instructions=list(KNOWN_SCAMMER_ACTIONS),
            metadata={"description": description, "report_count": meta.get("report_count")},
        ),
        scam_type=meta.get("scam_type"),
        report_count=meta.get("report_count"),
    )


def evaluate_phone(
    signal: PhoneSignal,
    patterns: Iterable[Pattern],
    reputation: ReputationStore,
    high_risk_prefixes: Iterable[str] = HIGH_RISK_PREFIXES,
) -> Verdict:
    number = signal.number
    if reputation.is_trusted(number):
        return build_verdict(0, alert_message="This number is in your trusted contacts")
    if reputation.is_blocked(number):
        return build_verdict(
            100,
            risk_factors=["Blocked number"],
            alert_message="This number has been blocked due to suspicious activity",
        )

    s = score_number_structure(number, high_risk_prefixes)
    s.add_matches(_engine.apply(patterns, normalize_phone(number), ("phone",)))

    entry = reputation.find_known_fraud(number)
    if entry is not None:
        return _known_fraud_verdict(entry, s)

    if s.total >= FRAUD_THRESHOLD:
        message = f"Suspicious number pattern detected ({clamp_score(s.total)}% risk)"
    elif s.total >= 20:
        message = "Minor suspicious indicators detected"
    else:
        message = "Number appears normal"
    return build_verdict(s.total, risk_factors=s.factors, matched_patterns=s.matches, alert_message=message)


# ---------------------------------------------------------------------------
# Text signals
# ---------------------------------------------------------------------------

def evaluate_text(signal: TextSignal, patterns: Iterable[Pattern], reputation: ReputationStore) -> Verdict:
    s = _Score()
    body = signal.body or ""
    urls = signal.extracted_urls or []

    s.add_matches(_engine.apply(patterns, body, ("text", "url")))

    if signal.sender and reputation.is_blocked(signal.sender):
        s.add(SUSPICIOUS_SENDER_PENALTY, "Known suspicious sender")

    trusted_domains = reputation.domains(Classification.TRUSTED)
    for url in urls:
        try:
            host = url_host(url)
        except MalformedURL:
            s.add(MALFORMED_URL_PENALTY, "Malformed URL")
            continue
        if reputation.is_blocked(host, "domain"):
            s.add(BLOCKED_DOMAIN_PENALTY, f"Blocked domain: {host}")
        if suspicious_url_reasons(url, host, trusted_domains):
            s.add(SUSPICIOUS_URL_PENALTY, "Suspicious URL pattern")

    if len(body) > LONG_MESSAGE_CHARS:
        s.add(LONG_MESSAGE_PENALTY, "Unusually long message")
    if len(urls) > MANY_LINKS_COUNT:
        s.add(MANY_LINKS_PENALTY, "Multiple links")

    return build_verdict(s.total, risk_factors=s.factors, matched_patterns=s.matches)


def evaluate(signal, patterns: Iterable[Pattern], reputation: ReputationStore,
             high_risk_prefixes: Iterable[str] = HIGH_RISK_PREFIXES) -> Verdict:
    try:
        if isinstance(signal, PhoneSignal):
            return evaluate_phone(signal, patterns, reputation, high_risk_prefixes)
        return evaluate_text(signal, patterns, reputation)
    except Exception:
        logger.exception("Local evaluation failed for %s signal", getattr(signal, "kind", "unknown"))
        return build_verdict(0, risk_factors=["Local evaluation error"])
