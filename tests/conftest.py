import asyncio
import os

import pytest

from fraudsignal.config import Settings
from fraudsignal.policy import AlertSink
from fraudsignal.rules import load_patterns
from fraudsignal.stores import EvaluationLog, MemoryBlobStore, ReputationStore, StoreUnavailable

ROOT = os.path.join(os.path.dirname(__file__), "..")
PATTERNS_PATH = os.path.join(ROOT, "rules", "patterns.yaml")
REPUTATION_PATH = os.path.join(ROOT, "rules", "reputation.yaml")


class RecordingSink(AlertSink):
    def __init__(self):
        self.alerts = []

    async def deliver(self, alert, decision):
        self.alerts.append(alert)


class FakeRemote:
    def __init__(self, verdict=None, delay=0.0, report_ok=True):
        self.verdict = verdict
        self.delay = delay
        self.report_ok = report_ok
        self.detect_calls = []
        self.reports = []

    async def detect(self, signal):
        self.detect_calls.append(signal)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.verdict

    async def report(self, signal, description=None, scam_type=None):
        self.reports.append((signal, description, scam_type))
        return self.report_ok


class FailingBlobStore(MemoryBlobStore):
    async def put(self, key, value):
        raise StoreUnavailable(f"write {key}: disk full")


@pytest.fixture
def blobs():
    return MemoryBlobStore()

@pytest.fixture
def reputation(blobs):
    return ReputationStore(blobs)

@pytest.fixture
def log(blobs):
    return EvaluationLog(blobs)

@pytest.fixture
def default_patterns():
    return load_patterns(PATTERNS_PATH)

@pytest.fixture
def default_reputation(blobs):
    store = ReputationStore(blobs, REPUTATION_PATH)
    asyncio.run(store.load())
    return store

@pytest.fixture
def settings(tmp_path):
    return Settings(
        store_dir=str(tmp_path),
        patterns_path=PATTERNS_PATH,
        reputation_path=REPUTATION_PATH,
        remote_timeout=0.2,
    )

@pytest.fixture
def sink():
    return RecordingSink()

@pytest.fixture
def make_remote():
    return FakeRemote

@pytest.fixture
def failing_blobs():
    return FailingBlobStore()
