"""
Monitoring session: owns the stores for one monitoring context and runs the
full flow for each signal.

    signal -> local evaluation -> (remote, unless the local score short-circuits)
           -> combine -> action policy

Store mutations inside one session are serialized per store; the remote call
is time-bounded and any failure degrades to the local verdict.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from .combiner import combine
from .config import Settings
from .evaluator import evaluate
from .feature_extractors import CALL_INDICATORS, SMS_INDICATORS, contains_any, extract_phone_number
from .models import ActionDecision, PhoneSignal, ReputationEntry, TextSignal, Verdict
from .policy import ActionPolicy, AlertSink
from .remote import RemoteEvaluator
from .stores import BlobStore, EvaluationLog, JsonFileBlobStore, PatternStore, ReputationStore

logger = logging.getLogger("fraudsignal.monitor")


def is_call_notification(payload: Dict[str, Any]) -> bool:
    fields = [payload.get(k) or "" for k in ("source", "title", "body")]
    return any(contains_any(f, CALL_INDICATORS) for f in fields)


def is_sms_notification(payload: Dict[str, Any]) -> bool:
    fields = [payload.get(k) or "" for k in ("source", "packageName", "title")]
    return any(contains_any(f, SMS_INDICATORS) for f in fields)


def signal_from_notification(payload: Dict[str, Any]):
    """Build a Signal from a host push payload, or None if it carries nothing to check."""
    message = payload.get("body") or payload.get("text") or payload.get("message") or ""
    if is_call_notification(payload):
        text = f"{payload.get('title') or ''} {message} {payload.get('number') or ''}"
        number = extract_phone_number(text) or payload.get("number")
        return PhoneSignal(number=number) if number else None
    if is_sms_notification(payload) and message:
        text = f"{payload.get('title') or ''} {message} {payload.get('sender') or ''}"
        sender = extract_phone_number(text) or payload.get("sender")
        return TextSignal(sender=sender, body=message)
    return None


class MonitoringSession:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        blobs: Optional[BlobStore] = None,
        alert_sink: Optional[AlertSink] = None,
        remote: Optional[RemoteEvaluator] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.blobs = blobs or JsonFileBlobStore(self.settings.store_dir)
        if remote is None and self.settings.api_base:
            remote = RemoteEvaluator(self.settings.api_base, self.settings.api_token, self.settings.remote_timeout)
        self.remote = remote
        self.patterns = PatternStore(self.blobs, self.settings.patterns_path)
        self.reputation = ReputationStore(self.blobs, self.settings.reputation_path)
        self.log = EvaluationLog(self.blobs, self.settings.log_capacity)
        self.policy = ActionPolicy(self.reputation, self.log, alert_sink, self.remote)
        self.active = False
        self._loaded = False
        self._start_lock = asyncio.Lock()

    async def start(self) -> None:
        async with self._start_lock:
            if not self._loaded:
                await self.patterns.load()
                await self.reputation.load()
                await self.log.load()
                self._loaded = True
        self.active = True
        logger.info("Monitoring started (remote=%s)", "on" if self.remote else "off")

    async def stop(self) -> None:
        self.active = False
        logger.info("Monitoring stopped")

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.start()

    # ---- evaluation ----
    def evaluate_local(self, signal) -> Verdict:
        return evaluate(signal, self.patterns.active(), self.reputation, self.settings.high_risk_prefixes)

    async def _remote_opinion(self, signal) -> Optional[Verdict]:
        if self.remote is None:
            return None
        try:
            return await asyncio.wait_for(self.remote.detect(signal), timeout=self.settings.remote_timeout)
        except asyncio.TimeoutError:
            logger.warning("Remote authority timed out after %.1fs", self.settings.remote_timeout)
            return None

    async def evaluate(self, signal) -> Verdict:
        await self._ensure_loaded()
        local = self.evaluate_local(signal)
        if local.risk_score >= self.settings.short_circuit_score:
            return local
        return combine(local, await self._remote_opinion(signal))

    async def evaluate_many(self, signals: List[Any]) -> List[Verdict]:
        return [await self.evaluate(s) for s in signals]

    async def process(self, signal) -> Tuple[Verdict, ActionDecision]:
        verdict = await self.evaluate(signal)
        decision = await self.policy.apply(signal, verdict)
        return verdict, decision

    async def handle_notification(self, payload: Dict[str, Any]) -> Optional[ActionDecision]:
        signal = signal_from_notification(payload)
        if signal is None:
            return None
        _, decision = await self.process(signal)
        return decision

    # ---- user actions ----
    async def report(self, signal, description: Optional[str] = None,
                     scam_type: Optional[str] = None) -> List[ReputationEntry]:
        await self._ensure_loaded()
        return await self.policy.report(signal, description, scam_type)

    async def block(self, identifier: str, kind: str = "phone") -> bool:
        await self._ensure_loaded()
        return await self.reputation.block(identifier, kind, "user")

    async def mark_safe(self, identifier: str, kind: str = "phone") -> None:
        await self._ensure_loaded()
        await self.reputation.mark_safe(identifier, kind)

    async def update_database(
        self,
        known_fraud: Optional[List[Dict[str, Any]]] = None,
        trusted: Optional[List[Dict[str, Any]]] = None,
        blocked: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        await self._ensure_loaded()
        await self.reputation.replace(known_fraud=known_fraud, trusted=trusted, blocked=blocked)

    def check_identifier(self, identifier: str, kind: str = "phone") -> Optional[ReputationEntry]:
        if kind == "phone":
            return self.reputation.classify(identifier, kind) or self.reputation.find_known_fraud(identifier)
        return self.reputation.classify(identifier, kind)

    def statistics(self) -> Dict[str, Any]:
        return self.log.statistics()
