"""
Client for the remote fraud-intelligence authority.

Every failure mode (transport error, timeout, non-200 status, unreadable body)
is reported as "no remote opinion"; nothing here raises to the caller.
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp
from pydantic import ValidationError

from .evaluator import build_verdict
from .models import PatternMatch, PhoneSignal, Provenance, RecommendedAction, Verdict

logger = logging.getLogger("fraudsignal.remote")

DEFAULT_TIMEOUT = 5.0


def signal_payload(signal) -> Dict[str, Any]:
    timestamp = datetime.now(timezone.utc).isoformat()
    if isinstance(signal, PhoneSignal):
        return {"phoneNumber": signal.number, "type": "incoming_call", "timestamp": timestamp}
    return {
        "phoneNumber": signal.sender,
        "message": signal.body,
        "urls": list(signal.extracted_urls or []),
        "type": "sms_content",
        "timestamp": timestamp,
    }


def parse_remote_verdict(data: Any) -> Optional[Verdict]:
    """Read a verdict-shaped body; the level is always re-derived from the score."""
    if not isinstance(data, dict):
        return None
    body = data.get("detection", data)
    if not isinstance(body, dict) or "riskScore" not in body:
        return None
    try:
        score = float(body["riskScore"])
        if not math.isfinite(score):
            raise ValueError(f"non-finite risk score {body['riskScore']!r}")
        matches = [PatternMatch.model_validate(m) for m in body.get("matchedPatterns") or body.get("detectedPatterns") or []
                   if isinstance(m, dict) and "patternId" in m]
        action = body.get("recommendedAction")
        if isinstance(action, dict):
            action = RecommendedAction.model_validate(action)
        elif isinstance(action, list):
            action = RecommendedAction(instructions=[str(a) for a in action])
        else:
            action = None
        report_count = body.get("reportCount")
        return build_verdict(
            score,
            risk_factors=[str(f) for f in body.get("riskFactors") or []],
            matched_patterns=matches,
            provenance=Provenance.REMOTE,
            alert_message=body.get("alertMessage") or "",
            recommended_action=action,
            scam_type=body.get("scamType"),
            report_count=int(report_count) if report_count is not None else None,
        )
    except (TypeError, ValueError, OverflowError, ValidationError) as e:
        logger.warning("Ignoring unreadable remote verdict: %s", e)
        return None


class RemoteEvaluator:
    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _post(self, path: str, payload: Dict[str, Any]):
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{self.base_url}{path}",
                json=payload,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if not 200 <= resp.status < 300:
                    logger.warning("POST %s returned status %d", path, resp.status)
                    return resp.status, None
                try:
                    return resp.status, await resp.json(content_type=None)
                except ValueError:
                    logger.warning("POST %s returned a non-JSON body", path)
                    return resp.status, None

    async def detect(self, signal) -> Optional[Verdict]:
        try:
            status, data = await self._post("/detect", signal_payload(signal))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Remote authority unavailable: %r", e)
            return None
        if status != 200:
            return None
        return parse_remote_verdict(data)

    async def report(self, signal, description: Optional[str] = None, scam_type: Optional[str] = None) -> bool:
        """Forward a user fraud report. Errors are logged only."""
        payload = signal_payload(signal)
        if isinstance(signal, PhoneSignal):
            path = "/report-number"
            payload["reportType"] = "scam_call"
        else:
            path = "/report"
            payload["reportType"] = "scam_sms"
        payload["description"] = description
        payload["scamType"] = scam_type
        try:
            status, _ = await self._post(path, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Error reporting to remote authority: %r", e)
            return False
        return 200 <= status < 300
