import asyncio

from fraudsignal.evaluator import build_verdict
from fraudsignal.models import PhoneSignal, Provenance, RiskLevel, TextSignal
from fraudsignal.monitor import MonitoringSession, signal_from_notification
from fraudsignal.stores import BLOCKED_KEY, MemoryBlobStore

def _session(settings, sink=None, remote=None, blobs=None):
    return MonitoringSession(settings, blobs=blobs or MemoryBlobStore(), alert_sink=sink, remote=remote)

def test_local_only_without_remote(settings):
    session = _session(settings)
    v = asyncio.run(session.evaluate(PhoneSignal(number="+919876543210")))
    assert v.provenance == Provenance.LOCAL
    assert v.risk_score == 0

def test_high_local_score_skips_remote(settings, make_remote):
    remote = make_remote(verdict=build_verdict(10, provenance=Provenance.REMOTE))
    session = _session(settings, remote=remote)
    v = asyncio.run(session.evaluate(PhoneSignal(number="+91-9999999999")))
    assert remote.detect_calls == []
    assert v.provenance == Provenance.LOCAL
    assert v.risk_score == 95

def test_remote_opinion_is_combined(settings, make_remote):
    remote = make_remote(verdict=build_verdict(92, provenance=Provenance.REMOTE, alert_message="Reported 40 times"))
    session = _session(settings, remote=remote)
    v = asyncio.run(session.evaluate(PhoneSignal(number="+919876543210")))
    assert len(remote.detect_calls) == 1
    assert v.provenance == Provenance.COMBINED
    assert v.risk_score == 92
    assert v.risk_level == RiskLevel.CRITICAL
    assert v.alert_message == "Reported 40 times"

def test_slow_remote_degrades_to_local(settings, make_remote):
    remote = make_remote(verdict=build_verdict(99, provenance=Provenance.REMOTE), delay=1.0)
    session = _session(settings, remote=remote)
    v = asyncio.run(session.evaluate(PhoneSignal(number="1111111111")))
    assert v.provenance == Provenance.LOCAL
    assert v.risk_score == 70

def test_process_runs_policy(settings, sink):
    session = _session(settings, sink=sink)
    text = "congratulations you have won a lottery prize, click here to claim http://bit.ly/x"
    verdict, decision = asyncio.run(session.process(TextSignal(sender="+14155550123", body=text)))
    assert verdict.risk_level == RiskLevel.CRITICAL
    assert decision.state.value == "auto_blocked"
    assert len(sink.alerts) == 1
    assert session.statistics()["fraud"] == 1

def test_blocked_then_marked_safe_number(settings):
    session = _session(settings)

    async def run():
        await session.block("+14155550123")
        before = await session.evaluate(PhoneSignal(number="+14155550123"))
        await session.mark_safe("+14155550123")
        after = await session.evaluate(PhoneSignal(number="+14155550123"))
        return before, after
    before, after = asyncio.run(run())
    assert before.risk_score == 100 and before.is_fraud
    assert after.risk_score == 0 and not after.is_fraud

def test_report_when_remote_fails(settings, make_remote):
    session = _session(settings, remote=make_remote(report_ok=False))
    asyncio.run(session.report(PhoneSignal(number="+14155550123")))
    assert session.check_identifier("+14155550123").classification.value == "known-fraud"

def test_session_state_survives_restart(settings):
    blobs = MemoryBlobStore()

    async def run():
        first = _session(settings, blobs=blobs)
        await first.start()
        await first.block("+14155550123")
        await first.stop()
        second = _session(settings, blobs=blobs)
        return await second.evaluate(PhoneSignal(number="+14155550123"))
    assert asyncio.run(run()).risk_score == 100

def test_update_database(settings):
    session = _session(settings)

    async def run():
        await session.start()
        await session.update_database(known_fraud=[], trusted=[{"identifier": "+91-9999999999"}])
        return await session.evaluate(PhoneSignal(number="+91-9999999999"))
    v = asyncio.run(run())
    assert len(session.reputation.known_fraud) == 0
    assert not v.is_fraud

def test_evaluate_many_keeps_order(settings):
    session = _session(settings)
    verdicts = asyncio.run(session.evaluate_many([PhoneSignal(number="1111111111"), PhoneSignal(number="+919876543210")]))
    assert [v.risk_score for v in verdicts] == [70, 0]

def test_call_notification_to_signal():
    s = signal_from_notification({"title": "Incoming call", "body": "Call from +2348012345678"})
    assert isinstance(s, PhoneSignal)
    assert s.number == "+2348012345678"

def test_sms_notification_to_signal():
    s = signal_from_notification({
        "packageName": "com.google.android.apps.messaging",
        "title": "Messages",
        "body": "Your account is locked, verify at http://secure-login.example.com",
        "sender": "+14155550123",
    })
    assert isinstance(s, TextSignal)
    assert s.sender == "+14155550123"
    assert s.extracted_urls == ["http://secure-login.example.com"]

def test_unrelated_notification_ignored(settings):
    session = _session(settings)
    assert asyncio.run(session.handle_notification({"source": "calendar", "title": "Standup"})) is None

def test_settings_from_env(monkeypatch, tmp_path):
    from fraudsignal.config import Settings
    from fraudsignal.remote import RemoteEvaluator

    monkeypatch.setenv("FRAUD_API_BASE", "http://fraud.example")
    monkeypatch.setenv("REMOTE_TIMEOUT", "1.5")
    monkeypatch.setenv("HIGH_RISK_PREFIXES", "+44, +33")
    monkeypatch.setenv("STORE_DIR", str(tmp_path))
    settings = Settings.from_env()
    assert settings.remote_timeout == 1.5
    assert settings.high_risk_prefixes == ("+44", "+33")
    assert settings.short_circuit_score == 80
    session = MonitoringSession(settings)
    assert isinstance(session.remote, RemoteEvaluator)

class CountingBlobStore(MemoryBlobStore):
    def __init__(self):
        super().__init__()
        self.reads = {}

    async def get(self, key):
        self.reads[key] = self.reads.get(key, 0) + 1
        await asyncio.sleep(0.01)
        return await super().get(key)

def test_concurrent_first_calls_load_once(settings):
    blobs = CountingBlobStore()
    session = _session(settings, blobs=blobs)

    async def run():
        await asyncio.gather(
            session.block("+14155550123"),
            session.evaluate(PhoneSignal(number="+919876543210")),
            session.mark_safe("+14155550199"),
        )
    asyncio.run(run())
    assert blobs.reads[BLOCKED_KEY] == 1
    assert session.reputation.is_blocked("+14155550123")
    assert session.reputation.is_trusted("+14155550199")
