import asyncio

from fraudsignal.evaluator import evaluate
from fraudsignal.models import PhoneSignal, Provenance, RiskLevel, TextSignal
from fraudsignal.rules import map_to_risk_level

def test_clean_mobile_number_is_minimal(reputation):
    v = evaluate(PhoneSignal(number="+919876543210"), [], reputation)
    assert v.risk_score == 0
    assert v.risk_level == RiskLevel.MINIMAL
    assert not v.is_fraud
    assert v.provenance == Provenance.LOCAL

def test_repeated_digits(reputation):
    v = evaluate(PhoneSignal(number="1111111111"), [], reputation)
    assert v.risk_score == 70
    assert v.risk_level == RiskLevel.HIGH
    assert v.is_fraud
    assert "Contains many repeated digits" in v.risk_factors
    assert "Contains all same digits" in v.risk_factors

def test_phone_penalties_accumulate_and_clamp(reputation):
    # repeated +30, same tail +40, zeros +20, high-risk prefix +40
    v = evaluate(PhoneSignal(number="+234 000 0000000"), [], reputation)
    assert v.risk_score == 100
    assert v.risk_level == RiskLevel.CRITICAL
    assert "Number from high-risk region" in v.risk_factors

def test_short_sequential_number(reputation):
    v = evaluate(PhoneSignal(number="12345"), [], reputation)
    assert v.risk_score == 60
    assert v.risk_level == RiskLevel.MEDIUM

def test_trusted_number_overrides_heuristics(reputation):
    asyncio.run(reputation.mark_safe("1111111111"))
    v = evaluate(PhoneSignal(number="111-111-1111"), [], reputation)
    assert v.risk_score == 0
    assert not v.is_fraud

def test_blocked_number_is_certain_fraud(reputation):
    asyncio.run(reputation.block("+919876543210"))
    v = evaluate(PhoneSignal(number="+91 98765 43210"), [], reputation)
    assert v.risk_score == 100
    assert v.is_fraud
    assert v.risk_level == RiskLevel.CRITICAL

def test_known_fraud_number(default_reputation):
    v = evaluate(PhoneSignal(number="+91-9999999999"), [], default_reputation)
    assert v.is_fraud
    assert v.risk_score == 95
    assert v.alert_message.startswith("KNOWN SCAMMER")
    assert v.scam_type == "tech_support_scam"
    assert v.report_count == 150
    assert v.recommended_action.metadata["report_count"] == 150

def test_known_fraud_substring_match(default_reputation):
    v = evaluate(PhoneSignal(number="8888888888"), [], default_reputation)
    assert v.is_fraud
    assert v.scam_type == "lottery_scam"

def test_known_fraud_score_never_below_threshold(reputation):
    asyncio.run(reputation.report("+14155550123", risk_score=10))
    v = evaluate(PhoneSignal(number="+14155550123"), [], reputation)
    assert v.is_fraud
    assert v.risk_score == 40

def test_phone_patterns_apply(reputation, default_patterns):
    v = evaluate(PhoneSignal(number="1401234567"), default_patterns, reputation)
    assert any(m.pattern_id == "telemarketing_series" for m in v.matched_patterns)

def test_lottery_message_is_critical(reputation, default_patterns):
    text = "congratulations you have won a lottery prize, click here to claim http://bit.ly/x"
    v = evaluate(TextSignal(body=text), default_patterns, reputation)
    assert v.risk_score >= 85
    assert v.risk_level == RiskLevel.CRITICAL
    assert [m.pattern_id for m in v.matched_patterns] == ["lottery_scam"]
    assert "Suspicious URL pattern" in v.risk_factors

def test_pattern_weights_are_cumulative(reputation, default_patterns):
    v = evaluate(TextSignal(body="Urgent action required"), default_patterns, reputation)
    assert v.risk_score == 70
    v = evaluate(TextSignal(body="Urgent action required: verify your account"), default_patterns, reputation)
    assert len(v.matched_patterns) == 2
    assert v.risk_score == 100

def test_blocked_domain(reputation):
    asyncio.run(reputation.block("Evil.Example.com", "domain"))
    v = evaluate(TextSignal(body="see https://evil.example.com/path"), [], reputation)
    assert v.risk_score == 50
    assert "Blocked domain: evil.example.com" in v.risk_factors

def test_suspicious_urls_counted_per_url(reputation):
    v = evaluate(TextSignal(body="x", extracted_urls=["http://bit.ly/a", "http://bit.ly/b"]), [], reputation)
    assert v.risk_score == 60

def test_malformed_url_penalty(reputation):
    v = evaluate(TextSignal(body="x", extracted_urls=["http://[broken"]), [], reputation)
    assert v.risk_score == 20
    assert v.risk_factors == ["Malformed URL"]

def test_long_message_with_many_links(reputation):
    urls = [f"https://example.com/page{i}" for i in "abcd"]
    v = evaluate(TextSignal(body="a" * 501, extracted_urls=urls), [], reputation)
    assert v.risk_score == 25
    assert v.risk_level == RiskLevel.LOW

def test_blocked_sender(reputation):
    asyncio.run(reputation.block("+14155550123"))
    v = evaluate(TextSignal(sender="+1 (415) 555-0123", body="hello"), [], reputation)
    assert v.risk_score == 40
    assert v.is_fraud

def test_lookalike_of_trusted_domain(reputation):
    asyncio.run(reputation.mark_safe("paypal.com", "domain"))
    v = evaluate(TextSignal(body="pay at http://paypa1.com/pay"), [], reputation)
    assert v.risk_score == 30
    v = evaluate(TextSignal(body="pay at https://www.paypal.com/pay"), [], reputation)
    assert v.risk_score == 0

def test_urls_extracted_from_body():
    s = TextSignal(body="Go to www.example.org/a or https://bit.ly/xyz.")
    assert s.extracted_urls == ["www.example.org/a", "https://bit.ly/xyz"]

def test_evaluation_never_raises():
    v = evaluate(PhoneSignal(number="1"), [], None)
    assert v.risk_score == 0
    assert v.risk_factors == ["Local evaluation error"]

def test_scores_and_levels_consistent(default_reputation, default_patterns):
    signals = [
        PhoneSignal(number=n) for n in ("", "0", "+19005550000", "99999999999999999999", "+1-800-SCAMMER")
    ] + [
        TextSignal(body=b) for b in ("", "your bank account suspended, verify your identity http://1.2.3.4/login",
                                     "hi mom", "x " * 400 + "http://a-b-c.com http://e.com http://f.com http://g.com")
    ]
    for s in signals:
        v = evaluate(s, default_patterns, default_reputation)
        assert 0 <= v.risk_score <= 100
        assert v.risk_level == map_to_risk_level(v.risk_score)
        assert v.is_fraud == (v.risk_score >= 40)
