import asyncio, os
from fraudsignal.config import Settings
from fraudsignal.models import PhoneSignal, TextSignal
from fraudsignal.monitor import MonitoringSession
from fraudsignal.stores import MemoryBlobStore

BASE = os.path.dirname(os.path.dirname(__file__))
settings = Settings(
    patterns_path=os.path.join(BASE, "rules", "patterns.yaml"),
    reputation_path=os.path.join(BASE, "rules", "reputation.yaml"),
)

samples = [
    PhoneSignal(number="+91-9999999999"),
    PhoneSignal(number="1111111111"),
    TextSignal(sender="+14155550123", body="Congratulations you have won a lottery prize, click here to claim http://bit.ly/x"),
    TextSignal(body="Your parcel is waiting, track it at https://secure-update-parcel.com/12345678"),
]

async def main():
    session = MonitoringSession(settings, blobs=MemoryBlobStore())
    await session.start()
    for signal in samples:
        verdict, decision = await session.process(signal)
        print("SIGNAL:", signal.model_dump(by_alias=True, exclude_none=True))
        print("VERDICT:", verdict.risk_score, verdict.risk_level.value, verdict.risk_factors)
        print("STATE:", decision.state.value, decision.auto_block.identifiers if decision.auto_block else "")
    print("STATS:", session.statistics())

if __name__ == "__main__":
    asyncio.run(main())
