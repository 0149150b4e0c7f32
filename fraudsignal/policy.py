"""
Action policy: turns a final verdict into side effects.

    evaluated -> alerted                    whenever the verdict is fraud
    alerted   -> auto_blocked               immediately when the level is critical
    alerted   -> user_blocked | user_marked_safe | ignored   on explicit user action
    auto_blocked | user_blocked -> user_marked_safe           on explicit user action

Reporting is independent of the state: the local reputation store is updated
first, then the report is forwarded to the remote authority best-effort.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from .feature_extractors import MalformedURL, url_host
from .models import (
    ActionDecision,
    ActionState,
    Alert,
    AutoBlock,
    LogEntry,
    PhoneSignal,
    ReputationEntry,
    RiskLevel,
    Verdict,
)
from .stores import EvaluationLog, ReputationStore

logger = logging.getLogger("fraudsignal.policy")

TRANSITIONS: Dict[ActionState, Set[ActionState]] = {
    ActionState.EVALUATED: {ActionState.ALERTED},
    ActionState.ALERTED: {
        ActionState.AUTO_BLOCKED,
        ActionState.USER_BLOCKED,
        ActionState.USER_MARKED_SAFE,
        ActionState.IGNORED,
    },
    ActionState.AUTO_BLOCKED: {ActionState.USER_MARKED_SAFE},
    ActionState.USER_BLOCKED: {ActionState.USER_MARKED_SAFE},
    ActionState.USER_MARKED_SAFE: set(),
    ActionState.IGNORED: set(),
}

ALERT_ICONS = {
    RiskLevel.CRITICAL: "🔴",
    RiskLevel.HIGH: "🚨",
    RiskLevel.MEDIUM: "⚠️",
    RiskLevel.LOW: "🔶",
    RiskLevel.MINIMAL: "ℹ️",
}


class InvalidTransition(Exception):
    def __init__(self, current: ActionState, target: ActionState):
        super().__init__(f"cannot move from {current.value} to {target.value}")
        self.current = current
        self.target = target


def transition(decision: ActionDecision, target: ActionState) -> None:
    if target not in TRANSITIONS[decision.state]:
        raise InvalidTransition(decision.state, target)
    decision.state = target


class AlertSink:
    """Where user-facing alerts go. Hosts supply their own delivery."""

    async def deliver(self, alert: Alert, decision: ActionDecision) -> None:
        raise NotImplementedError


class LoggingAlertSink(AlertSink):
    async def deliver(self, alert: Alert, decision: ActionDecision) -> None:
        logger.warning("%s | %s", alert.title, alert.body)


def _identifier(signal) -> Optional[str]:
    return signal.number if isinstance(signal, PhoneSignal) else signal.sender


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_alert(signal, verdict: Verdict) -> Alert:
    identifier = _identifier(signal)
    if isinstance(signal, PhoneSignal):
        title = f"{ALERT_ICONS[verdict.risk_level]} SCAM CALL ALERT"
        body = f"{verdict.alert_message}\n\nFrom: {identifier}"
        actions = ["block", "report", "mark_safe"]
        if verdict.risk_level != RiskLevel.CRITICAL:
            actions.append("answer_anyway")
    else:
        title = f"{ALERT_ICONS[verdict.risk_level]} SMS FRAUD ALERT"
        body = verdict.alert_message
        actions = ["block", "report", "ignore"]
    return Alert(
        title=title,
        body=body,
        risk_level=verdict.risk_level,
        identifier=identifier,
        actions=actions,
        require_interaction=isinstance(signal, PhoneSignal) or verdict.risk_level == RiskLevel.CRITICAL,
    )


def _log_entry(signal, verdict: Verdict, event_type: str) -> LogEntry:
    return LogEntry(
        signal_kind=signal.kind,
        identifier=_identifier(signal),
        event_type=event_type,
        timestamp=_now(),
        risk_level=verdict.risk_level,
        risk_score=verdict.risk_score,
        is_fraud=verdict.is_fraud,
        provenance=verdict.provenance,
    )


class ActionPolicy:
    def __init__(self, reputation: ReputationStore, log: EvaluationLog,
                 alert_sink: Optional[AlertSink] = None, remote=None):
        self.reputation = reputation
        self.log = log
        self.alert_sink = alert_sink or LoggingAlertSink()
        self.remote = remote

    @staticmethod
    def _identifiers(signal) -> List[Tuple[str, str]]:
        """Sender/number plus every URL host a signal names, as (identifier, kind)."""
        if isinstance(signal, PhoneSignal):
            return [(signal.number, "phone")]
        found: List[Tuple[str, str]] = []
        if signal.sender:
            found.append((signal.sender, "phone"))
        for url in signal.extracted_urls or []:
            try:
                host = url_host(url)
            except MalformedURL:
                logger.warning("Skipping malformed URL: %s", url)
                continue
            if (host, "domain") not in found:
                found.append((host, "domain"))
        return found

    async def _block_signal(self, signal, reason: str) -> List[str]:
        blocked: List[str] = []
        for identifier, kind in self._identifiers(signal):
            await self.reputation.block(identifier, kind, reason)
            blocked.append(identifier)
        return blocked

    async def apply(self, signal, verdict: Verdict) -> ActionDecision:
        decision = ActionDecision(
            signal=signal,
            verdict=verdict,
            log_entry=_log_entry(signal, verdict, "evaluated"),
        )
        if not verdict.is_fraud:
            await self.log.append(decision.log_entry)
            return decision

        decision.alert = build_alert(signal, verdict)
        transition(decision, ActionState.ALERTED)
        decision.log_entry = _log_entry(signal, verdict, "alerted")

        if verdict.risk_level == RiskLevel.CRITICAL:
            identifiers = await self._block_signal(signal, "auto")
            decision.auto_block = AutoBlock(identifiers=identifiers)
            transition(decision, ActionState.AUTO_BLOCKED)
            decision.log_entry = _log_entry(signal, verdict, "auto_blocked")
            logger.info("Auto-blocked critical %s signal: %s", signal.kind, identifiers)

        await self.log.append(decision.log_entry)
        await self.alert_sink.deliver(decision.alert, decision)
        return decision

    # ---- explicit user actions ----
    async def block(self, decision: ActionDecision) -> ActionDecision:
        transition(decision, ActionState.USER_BLOCKED)
        await self._block_signal(decision.signal, "user")
        await self.log.append(_log_entry(decision.signal, decision.verdict, "user_blocked"))
        return decision

    async def mark_safe(self, decision: ActionDecision) -> ActionDecision:
        transition(decision, ActionState.USER_MARKED_SAFE)
        signal = decision.signal
        for identifier, kind in self._identifiers(signal):
            await self.reputation.mark_safe(identifier, kind)
        await self.log.append(_log_entry(signal, decision.verdict, "marked_safe"))
        return decision

    async def ignore(self, decision: ActionDecision, answered: bool = False) -> ActionDecision:
        transition(decision, ActionState.IGNORED)
        event = "answered_despite_warning" if answered else "ignored"
        await self.log.append(_log_entry(decision.signal, decision.verdict, event))
        return decision

    async def report(self, signal, description: Optional[str] = None,
                     scam_type: Optional[str] = None) -> List[ReputationEntry]:
        entries: List[ReputationEntry] = []
        for identifier, kind in self._identifiers(signal):
            entries.append(await self.reputation.report(identifier, kind, scam_type, description))

        if self.remote is not None:
            forwarded = await self.remote.report(signal, description, scam_type)
            if not forwarded:
                logger.warning("Report kept locally only; remote submission failed")
        return entries
