"""FastAPI application — status, signal ingestion and export over HTTP.

The phone (or a simulator) posts motion samples and foreground changes;
everything else is read from the running :class:`SleepDetectionService`.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date

import structlog
from fastapi import FastAPI, HTTPException, Query

from sleep_detector.api.schemas import (
    HealthImportRequest,
    HealthSyncToggle,
    LifecycleRequest,
    SampleBatchRequest,
    SettingsPatch,
    StatusOverrideRequest,
    StatusResponse,
)
from sleep_detector.config import get_settings
from sleep_detector.export import build_snapshot
from sleep_detector.models import SensorKind, SensorSample
from sleep_detector.service import SleepDetectionService
from sleep_detector.sources.push import PushLifecycleNotifier, PushMotionSensor
from sleep_detector.storage.database import dispose_engine, init_db
from sleep_detector.storage.keyvalue import SqlKeyValueStore

logger = structlog.get_logger(__name__)

# ── Shared state (initialised in lifespan) ────────────────────

_service: SleepDetectionService | None = None
_sensors: dict[SensorKind, PushMotionSensor] = {}
_lifecycle: PushLifecycleNotifier | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hooks."""
    global _service, _sensors, _lifecycle

    settings = get_settings()

    # 1. Database
    await init_db()
    logger.info("server.db_ready")

    # 2. Signal sources fed by the HTTP endpoints
    _sensors = {kind: PushMotionSensor(kind) for kind in SensorKind}
    _lifecycle = PushLifecycleNotifier()

    # 3. Detector
    _service = SleepDetectionService(SqlKeyValueStore(), settings=settings)
    await _service.start(_sensors.values(), _lifecycle)

    logger.info("server.started", port=settings.api_port)

    yield  # ← application runs

    # Shutdown
    if _service:
        await _service.stop()
    _service = None
    await dispose_engine()
    logger.info("server.stopped")


app = FastAPI(
    title="Sleep Detector API",
    description="Passive sleep / wake detection from phone activity signals.",
    version="0.1.0",
    lifespan=lifespan,
)


def _require_service() -> SleepDetectionService:
    if _service is None:
        raise HTTPException(503, "Detector not ready.")
    return _service


# ── Health ────────────────────────────────────────────────────

@app.get("/health", tags=["system"])
async def health():
    return {"status": "ok", "running": _service is not None and _service.is_running}


# ── Status ────────────────────────────────────────────────────

@app.get("/status", response_model=StatusResponse, tags=["status"])
async def get_status():
    return _require_service().status_snapshot()


@app.post("/status/override", tags=["status"])
async def override_status(req: StatusOverrideRequest):
    service = _require_service()
    await service.set_status(req.status)
    return {
        "status": service.controller.current_status.value,
        "confidence": service.controller.current_confidence,
    }


@app.post("/status/check", tags=["status"])
async def run_status_check():
    """Run one evaluation cycle immediately."""
    record = await _require_service().controller.check_status()
    return {"changed": record is not None, "record": record.model_dump(mode="json") if record else None}


@app.get("/detection/test", tags=["status"])
async def test_detection():
    return _require_service().controller.test_detection()


# ── Signals ───────────────────────────────────────────────────

@app.post("/samples", status_code=201, tags=["signals"])
async def ingest_samples(req: SampleBatchRequest):
    _require_service()
    for s in req.samples:
        await _sensors[s.sensor].push_sample(SensorSample(**s.model_dump(exclude_none=True)))
    return {"accepted": len(req.samples)}


@app.post("/lifecycle", tags=["signals"])
async def app_lifecycle(req: LifecycleRequest):
    service = _require_service()
    if _lifecycle is None:
        raise HTTPException(503, "Lifecycle notifier not ready.")
    await _lifecycle.push(req.state)
    return {"app_state": service.pipeline.app_state.value}


@app.post("/activity", status_code=201, tags=["signals"])
async def user_activity():
    service = _require_service()
    await service.record_user_activity()
    return {"last_genuine_activity": service.event_log.last_genuine_activity.isoformat()}


# ── History ───────────────────────────────────────────────────

@app.get("/records", tags=["history"])
async def list_records(day: date | None = Query(None, description="Only records of this day")):
    controller = _require_service().controller
    records = controller.records
    if day is not None:
        records = [r for r in records if r.timestamp.date() == day]
    return [r.model_dump(mode="json") for r in records]


@app.get("/summaries", tags=["history"])
async def list_summaries():
    return [s.model_dump(mode="json") for s in _require_service().controller.daily_summaries]


@app.get("/patterns", tags=["history"])
async def get_patterns():
    return _require_service().controller.sleep_patterns.model_dump(mode="json")


# ── Settings ──────────────────────────────────────────────────

@app.get("/settings", tags=["settings"])
async def get_app_settings():
    return _require_service().controller.settings.model_dump(mode="json")


@app.patch("/settings", tags=["settings"])
async def patch_app_settings(req: SettingsPatch):
    changes = req.model_dump(exclude_none=True)
    updated = await _require_service().update_settings(**changes)
    return updated.model_dump(mode="json")


# ── Health-store sync ─────────────────────────────────────────

@app.get("/health-sync", tags=["health-sync"])
async def get_health_sync():
    return _require_service().health_status()


@app.put("/health-sync", tags=["health-sync"])
async def set_health_sync(req: HealthSyncToggle):
    service = _require_service()
    await service.set_health_sync(req.enabled)
    return service.health_status()


@app.post("/health-sync/import", tags=["health-sync"])
async def import_health(req: HealthImportRequest):
    return {"imported": await _require_service().import_health(req.days)}


@app.post("/health-sync/export", tags=["health-sync"])
async def export_health():
    return {"exported": await _require_service().export_health()}


# ── Data ──────────────────────────────────────────────────────

@app.get("/export", tags=["data"])
async def export_data():
    return build_snapshot(_require_service().controller)


@app.delete("/data", tags=["data"])
async def delete_data():
    service = _require_service()
    await service.reset()
    return {"deleted": True, "records": len(service.controller.records)}
