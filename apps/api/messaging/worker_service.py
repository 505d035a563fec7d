"""Service entrypoint for the retention worker.

Runs the RetentionScheduler on the service's event loop and exposes health
and operational status over HTTP.
"""

from __future__ import annotations

import os

from fastapi import FastAPI, HTTPException

from messaging.core.config import settings
from messaging.core.structured_logging import configure_logging
from messaging.runtime import build_retention_scheduler, build_runtime, shutdown_runtime
from messaging.services.fanout import MessagingHub
from messaging.services.retention_scheduler import RetentionScheduler

app = FastAPI(title="messaging-retention-worker", version=settings.VERSION)
_hub: MessagingHub | None = None
_scheduler: RetentionScheduler | None = None


def _require_scheduler() -> RetentionScheduler:
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Retention scheduler not initialized")
    return _scheduler


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}


@app.get("/retention/status")
def retention_status() -> dict:
    return _require_scheduler().status()


@app.post("/retention/run")
async def retention_run() -> dict:
    """Run one cycle now. Reports a skip when a cycle is already running."""
    summary = await _require_scheduler().tick()
    if summary is None:
        return {"skipped": True, "reason": "cycle_in_progress"}
    return {"skipped": False, "summary": summary}


@app.on_event("startup")
async def _startup() -> None:
    configure_logging()
    global _hub, _scheduler
    _hub = build_runtime()
    _scheduler = build_retention_scheduler(_hub)
    if settings.RETENTION_WORKER_ENABLED:
        _scheduler.start()


@app.on_event("shutdown")
async def _shutdown() -> None:
    global _hub, _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
    if _hub is not None:
        shutdown_runtime(_hub)
    _hub = None
    _scheduler = None


def main() -> None:
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    host = os.getenv("HOST", "0.0.0.0")
    # nosec B104 - container platforms require binding to all interfaces.
    uvicorn.run("messaging.worker_service:app", host=host, port=port)


if __name__ == "__main__":
    main()
