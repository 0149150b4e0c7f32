"""
Pattern and reputation stores.

Each store owns one or more JSON blobs in a key-value ``BlobStore``. State is
loaded once per monitoring session (falling back to the shipped YAML defaults)
and the whole blob is written back after every mutation. Mutations on one store
are serialized through an ``asyncio.Lock`` so that two interleaved
append-then-persist sequences cannot drop each other's update.

Persistence failures never propagate: the in-memory state stays authoritative
for the lifetime of the process and the failure is logged.
"""

import asyncio
import json
import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .feature_extractors import digits_only, normalize_phone
from .models import Classification, LogEntry, Pattern, ReputationEntry
from .rules import load_known_fraud, load_patterns

logger = logging.getLogger("fraudsignal.stores")

PATTERNS_KEY = "fraud-patterns"
BLOCKED_KEY = "blocked-identifiers"
TRUSTED_KEY = "trusted-identifiers"
REPUTATION_KEY = "known-fraud-entries"
LOG_KEY = "evaluation-log"

DEFAULT_REPORT_SCORE = 80
MIN_SUBSTRING_DIGITS = 7


class StoreUnavailable(Exception):
    pass


# ---------------------------------------------------------------------------
# Blob stores
# ---------------------------------------------------------------------------

class BlobStore:
    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def put(self, key: str, value: Any) -> None:
        raise NotImplementedError


class MemoryBlobStore(BlobStore):
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.blobs: Dict[str, str] = {k: json.dumps(v) for k, v in (initial or {}).items()}

    async def get(self, key: str) -> Optional[Any]:
        raw = self.blobs.get(key)
        return json.loads(raw) if raw is not None else None

    async def put(self, key: str, value: Any) -> None:
        self.blobs[key] = json.dumps(value)


class JsonFileBlobStore(BlobStore):
    """One ``<key>.json`` file per blob under ``directory``."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def _read(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _write(self, key: str, value: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(value, indent=2), encoding="utf-8")
        tmp.replace(path)

    async def get(self, key: str) -> Optional[Any]:
        try:
            return await asyncio.to_thread(self._read, key)
        except (OSError, ValueError) as e:
            raise StoreUnavailable(f"read {key}: {e}") from e

    async def put(self, key: str, value: Any) -> None:
        try:
            await asyncio.to_thread(self._write, key, value)
        except (OSError, TypeError) as e:
            raise StoreUnavailable(f"write {key}: {e}") from e


class _PersistedStore:
    def __init__(self, blobs: BlobStore):
        self.blobs = blobs
        self._lock = asyncio.Lock()

    async def _read(self, key: str) -> Optional[Any]:
        try:
            return await self.blobs.get(key)
        except StoreUnavailable as e:
            logger.error("Could not load %s, using defaults: %s", key, e)
            return None

    async def _flush(self, key: str, payload: Any) -> bool:
        try:
            await self.blobs.put(key, payload)
            return True
        except StoreUnavailable as e:
            logger.error("Persisting %s failed, keeping in-memory state: %s", key, e)
            return False


def _dump(entries: Iterable[Any]) -> List[Dict[str, Any]]:
    return [e.model_dump(mode="json", by_alias=True) for e in entries]


# ---------------------------------------------------------------------------
# Pattern store
# ---------------------------------------------------------------------------

class PatternStore(_PersistedStore):
    def __init__(self, blobs: BlobStore, defaults_path: Optional[str] = None):
        super().__init__(blobs)
        self.defaults_path = defaults_path
        self.patterns: Dict[str, Pattern] = {}

    def __iter__(self):
        return iter(list(self.patterns.values()))

    def __len__(self):
        return len(self.patterns)

    def active(self) -> List[Pattern]:
        return [p for p in self.patterns.values() if p.active]

    def _set(self, patterns: Iterable[Pattern]) -> None:
        self.patterns = {p.id: p for p in patterns}

    async def load(self) -> None:
        stored = await self._read(PATTERNS_KEY)
        if stored is not None:
            loaded = []
            for raw in stored:
                try:
                    loaded.append(Pattern.model_validate(raw))
                except ValidationError as e:
                    logger.warning("Dropping unreadable stored pattern: %s", e)
            self._set(loaded)
        elif self.defaults_path:
            self._set(load_patterns(self.defaults_path))
        logger.info("Loaded %d fraud patterns", len(self.patterns))

    async def reload_defaults(self) -> int:
        if not self.defaults_path:
            return len(self.patterns)
        patterns = load_patterns(self.defaults_path)
        async with self._lock:
            self._set(patterns)
            await self._flush(PATTERNS_KEY, _dump(self.patterns.values()))
        return len(self.patterns)

    async def upsert(self, pattern: Pattern) -> None:
        async with self._lock:
            self.patterns[pattern.id] = pattern
            await self._flush(PATTERNS_KEY, _dump(self.patterns.values()))

    async def remove(self, pattern_id: str) -> bool:
        async with self._lock:
            removed = self.patterns.pop(pattern_id, None) is not None
            if removed:
                await self._flush(PATTERNS_KEY, _dump(self.patterns.values()))
            return removed


# ---------------------------------------------------------------------------
# Reputation store
# ---------------------------------------------------------------------------

def normalize_identifier(identifier: str, kind: str) -> str:
    if kind == "domain":
        return identifier.strip().lower().rstrip(".")
    return normalize_phone(identifier.strip())


class ReputationStore(_PersistedStore):
    """Trusted, blocked and known-fraud identifiers, keyed by normalised identifier."""

    def __init__(self, blobs: BlobStore, defaults_path: Optional[str] = None):
        super().__init__(blobs)
        self.defaults_path = defaults_path
        self.trusted: Dict[str, ReputationEntry] = {}
        self.blocked: Dict[str, ReputationEntry] = {}
        self.known_fraud: Dict[str, ReputationEntry] = {}

    # ---- lifecycle ----
    @staticmethod
    def _index(raw_entries: Optional[List[Dict[str, Any]]], classification: Classification) -> Dict[str, ReputationEntry]:
        index: Dict[str, ReputationEntry] = {}
        for raw in raw_entries or []:
            if isinstance(raw, str):
                raw = {"identifier": raw}
            try:
                entry = ReputationEntry.model_validate({**raw, "classification": classification})
            except ValidationError as e:
                logger.warning("Dropping unreadable %s entry: %s", classification.value, e)
                continue
            entry.identifier = normalize_identifier(entry.identifier, entry.kind)
            if not entry.identifier:
                logger.warning("Dropping %s entry with an empty identifier", classification.value)
                continue
            index[entry.identifier] = entry
        return index

    async def load(self) -> None:
        self.trusted = self._index(await self._read(TRUSTED_KEY), Classification.TRUSTED)
        self.blocked = self._index(await self._read(BLOCKED_KEY), Classification.BLOCKED)
        stored = await self._read(REPUTATION_KEY)
        if stored is None and self.defaults_path:
            stored = _dump(load_known_fraud(self.defaults_path))
        self.known_fraud = self._index(stored, Classification.KNOWN_FRAUD)
        logger.info(
            "Loaded reputation store: known_fraud=%d trusted=%d blocked=%d",
            len(self.known_fraud), len(self.trusted), len(self.blocked),
        )

    # ---- lookups ----
    def is_trusted(self, identifier: str, kind: str = "phone") -> bool:
        return normalize_identifier(identifier, kind) in self.trusted

    def is_blocked(self, identifier: str, kind: str = "phone") -> bool:
        return normalize_identifier(identifier, kind) in self.blocked

    def domains(self, classification: Classification) -> List[str]:
        source = {
            Classification.TRUSTED: self.trusted,
            Classification.BLOCKED: self.blocked,
            Classification.KNOWN_FRAUD: self.known_fraud,
        }[classification]
        return [e.identifier for e in source.values() if e.kind == "domain"]

    def find_known_fraud(self, number: str) -> Optional[ReputationEntry]:
        """Exact match, or a substring relationship between the two numbers."""
        wanted = normalize_phone(number)
        if not wanted:
            return None
        if wanted in self.known_fraud:
            return self.known_fraud[wanted]
        for entry in self.known_fraud.values():
            if entry.kind != "phone" or not entry.identifier:
                continue
            if entry.identifier in wanted:
                return entry
            if len(digits_only(wanted)) >= MIN_SUBSTRING_DIGITS and wanted in entry.identifier:
                return entry
        return None

    def classify(self, identifier: str, kind: str = "phone") -> Optional[ReputationEntry]:
        key = normalize_identifier(identifier, kind)
        for source in (self.trusted, self.blocked, self.known_fraud):
            if key in source:
                return source[key]
        return None

    # ---- mutations ----
    async def block(self, identifier: str, kind: str = "phone", reason: str = "user") -> bool:
        key = normalize_identifier(identifier, kind)
        async with self._lock:
            if key in self.blocked:
                return False
            self.blocked[key] = ReputationEntry(
                identifier=key, kind=kind, classification=Classification.BLOCKED,
                risk_score=100, metadata={"reason": reason, "blocked_at": _now()},
            )
            was_trusted = self.trusted.pop(key, None) is not None
            await self._flush(BLOCKED_KEY, _dump(self.blocked.values()))
            if was_trusted:
                await self._flush(TRUSTED_KEY, _dump(self.trusted.values()))
        logger.info("Blocked %s %s (%s)", kind, key, reason)
        return True

    async def mark_safe(self, identifier: str, kind: str = "phone") -> None:
        key = normalize_identifier(identifier, kind)
        async with self._lock:
            was_blocked = self.blocked.pop(key, None) is not None
            if key not in self.trusted:
                self.trusted[key] = ReputationEntry(
                    identifier=key, kind=kind, classification=Classification.TRUSTED,
                    metadata={"marked_safe_at": _now()},
                )
                await self._flush(TRUSTED_KEY, _dump(self.trusted.values()))
            if was_blocked:
                await self._flush(BLOCKED_KEY, _dump(self.blocked.values()))
        logger.info("Marked %s %s safe (was_blocked=%s)", kind, key, was_blocked)

    async def report(
        self,
        identifier: str,
        kind: str = "phone",
        scam_type: Optional[str] = None,
        description: Optional[str] = None,
        risk_score: int = DEFAULT_REPORT_SCORE,
    ) -> ReputationEntry:
        key = normalize_identifier(identifier, kind)
        async with self._lock:
            entry = self.known_fraud.get(key)
            if entry is None:
                entry = ReputationEntry(
                    identifier=key, kind=kind, classification=Classification.KNOWN_FRAUD,
                    risk_score=risk_score,
                    metadata={
                        "scam_type": scam_type or "unknown",
                        "report_count": 1,
                        "last_reported": _now(),
                        "description": description or "User-reported scam",
                    },
                )
                self.known_fraud[key] = entry
            else:
                entry.metadata["report_count"] = int(entry.metadata.get("report_count", 0)) + 1
                entry.metadata["last_reported"] = _now()
                if description:
                    entry.metadata["description"] = description
            await self._flush(REPUTATION_KEY, _dump(self.known_fraud.values()))
        return entry

    async def replace(
        self,
        known_fraud: Optional[List[Dict[str, Any]]] = None,
        trusted: Optional[List[Dict[str, Any]]] = None,
        blocked: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        async with self._lock:
            if known_fraud is not None:
                self.known_fraud = self._index(known_fraud, Classification.KNOWN_FRAUD)
                await self._flush(REPUTATION_KEY, _dump(self.known_fraud.values()))
            # blocked wins; only mark_safe moves an identifier out of it
            if blocked is not None:
                self.blocked = self._index(blocked, Classification.BLOCKED)
                await self._flush(BLOCKED_KEY, _dump(self.blocked.values()))
            if trusted is not None or blocked is not None:
                source = self._index(trusted, Classification.TRUSTED) if trusted is not None else self.trusted
                self.trusted = {k: e for k, e in source.items() if k not in self.blocked}
                await self._flush(TRUSTED_KEY, _dump(self.trusted.values()))


# ---------------------------------------------------------------------------
# Evaluation log
# ---------------------------------------------------------------------------

class EvaluationLog(_PersistedStore):
    """Ring buffer of the most recent evaluation log entries."""

    def __init__(self, blobs: BlobStore, capacity: int = 100):
        super().__init__(blobs)
        self.capacity = capacity
        self.entries: Deque[LogEntry] = deque(maxlen=capacity)

    def __len__(self):
        return len(self.entries)

    async def load(self) -> None:
        stored = await self._read(LOG_KEY) or []
        self.entries = deque(maxlen=self.capacity)
        for raw in stored:
            try:
                self.entries.append(LogEntry.model_validate(raw))
            except ValidationError:
                continue

    async def append(self, entry: LogEntry) -> None:
        async with self._lock:
            self.entries.append(entry)
            await self._flush(LOG_KEY, _dump(self.entries))

    def recent(self, limit: Optional[int] = None) -> List[LogEntry]:
        items = list(self.entries)
        return items[-limit:] if limit else items

    def statistics(self) -> Dict[str, Any]:
        by_level: Dict[str, int] = {}
        by_event: Dict[str, int] = {}
        for e in self.entries:
            by_level[e.risk_level.value] = by_level.get(e.risk_level.value, 0) + 1
            by_event[e.event_type] = by_event.get(e.event_type, 0) + 1
        return {
            "total": len(self.entries),
            "fraud": sum(1 for e in self.entries if e.is_fraud),
            "by_risk_level": by_level,
            "by_event_type": by_event,
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
