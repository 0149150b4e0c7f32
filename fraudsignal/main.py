import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException

from .config import Settings
from .models import (
    BulkDetectRequest,
    DatabaseUpdate,
    DetectRequest,
    IdentifierRequest,
    LogEntry,
    Pattern,
    ProcessResponse,
    ReportRequest,
    ReputationEntry,
    Verdict,
)
from .monitor import MonitoringSession
from .rules import PatternFileError

logger = logging.getLogger("fraudsignal.api")


def _signal(req: DetectRequest):
    try:
        return req.to_signal()
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def create_app(session: Optional[MonitoringSession] = None) -> FastAPI:
    session = session or MonitoringSession(Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await session.start()
        logger.info("Fraud signal service ready (%d patterns)", len(session.patterns))
        yield
        await session.stop()

    app = FastAPI(title="Fraud Signal Engine", version="1.0.0", lifespan=lifespan)
    app.state.session = session

    # ------------------------------------------------------------------
    #  Service
    # ------------------------------------------------------------------
    @app.get("/health")
    def health():
        return {
            "ok": True,
            "monitoring": session.active,
            "remote": session.remote is not None,
            "patterns": len(session.patterns),
        }

    @app.get("/patterns", response_model=List[Pattern])
    def get_patterns():
        return list(session.patterns)

    @app.post("/patterns/reload")
    async def reload_patterns():
        try:
            count = await session.patterns.reload_defaults()
        except PatternFileError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"reloaded": True, "count": count}

    # ------------------------------------------------------------------
    #  Detection
    # ------------------------------------------------------------------
    @app.post("/detect", response_model=Verdict)
    async def detect(req: DetectRequest):
        return await session.evaluate(_signal(req))

    @app.post("/detect-bulk", response_model=List[Verdict])
    async def detect_bulk(req: BulkDetectRequest):
        return await session.evaluate_many([_signal(item) for item in req.items])

    @app.post("/process", response_model=ProcessResponse)
    async def process(req: DetectRequest):
        verdict, decision = await session.process(_signal(req))
        return ProcessResponse(verdict=verdict, decision=decision)

    # ------------------------------------------------------------------
    #  Reputation
    # ------------------------------------------------------------------
    @app.post("/report-number", response_model=List[ReputationEntry])
    async def report_number(req: ReportRequest):
        if not req.phone_number:
            raise HTTPException(status_code=422, detail="phoneNumber is required")
        return await session.report(_signal(req), req.description, req.scam_type)

    @app.post("/report", response_model=List[ReputationEntry])
    async def report(req: ReportRequest):
        return await session.report(_signal(req), req.description, req.scam_type)

    @app.post("/block")
    async def block(req: IdentifierRequest):
        added = await session.block(req.identifier, req.kind)
        return {"blocked": True, "added": added}

    @app.post("/mark-safe")
    async def mark_safe(req: IdentifierRequest):
        await session.mark_safe(req.identifier, req.kind)
        return {"trusted": True}

    @app.get("/check-number/{number}")
    def check_number(number: str):
        entry = session.check_identifier(number)
        return {
            "identifier": number,
            "classification": entry.classification.value if entry else None,
            "entry": entry.model_dump(mode="json", by_alias=True) if entry else None,
        }

    @app.put("/database")
    async def update_database(req: DatabaseUpdate):
        await session.update_database(req.known_fraud, req.trusted, req.blocked)
        return {
            "knownFraud": len(session.reputation.known_fraud),
            "trusted": len(session.reputation.trusted),
            "blocked": len(session.reputation.blocked),
        }

    # ------------------------------------------------------------------
    #  History
    # ------------------------------------------------------------------
    @app.get("/log", response_model=List[LogEntry])
    def get_log(limit: Optional[int] = None):
        return session.log.recent(limit)

    @app.get("/statistics")
    def statistics():
        return session.statistics()

    return app


logging.basicConfig(
    level=Settings.from_env().log_level,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("fraudsignal.main:app", host="127.0.0.1", port=8000)
