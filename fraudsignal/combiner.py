from typing import Optional

from .evaluator import build_verdict
from .models import Provenance, Verdict


def combine(local: Verdict, remote: Optional[Verdict]) -> Verdict:
    """
    Merge a local verdict with an optional remote opinion.

    The score is most-severe-wins and the level is recomputed from it; the
    narrative fields (alert message, recommended action, scam type, report
    count) prefer the remote value when present. Pattern matches and risk
    factors are concatenated local-first with duplicates kept.
    """
    if remote is None:
        return local

    return build_verdict(
        max(local.risk_score, remote.risk_score),
        risk_factors=local.risk_factors + remote.risk_factors,
        matched_patterns=local.matched_patterns + remote.matched_patterns,
        provenance=Provenance.COMBINED,
        alert_message=remote.alert_message or local.alert_message,
        recommended_action=remote.recommended_action or local.recommended_action,
        scam_type=remote.scam_type or local.scam_type,
        report_count=remote.report_count or local.report_count,
    )
