from fastapi import APIRouter, Request

from staywatch.providers.registry import list_adapters
from staywatch.scheduler import get_scheduler_status

router = APIRouter()


@router.get("/providers/status")
async def providers_status(request: Request):
    """
    Per-provider circuit and session state plus the scheduler status.

    Providers never used since startup report a closed circuit.
    """
    pipeline = getattr(request.app.state, "pipeline", None)
    circuits = {}
    sessions = {}
    if pipeline is not None:
        circuits = {entry["provider"]: entry for entry in pipeline.breakers.snapshot()}
        sessions = {entry["provider"]: entry for entry in pipeline.pool.snapshot()}

    providers = []
    for adapter in list_adapters():
        circuit = circuits.get(adapter.code, {})
        session = sessions.get(adapter.code, {})
        providers.append({
            "code": adapter.code,
            "name": adapter.name,
            "strategies": [strategy.value for strategy in adapter.strategies],
            "circuitState": circuit.get("state", "CLOSED"),
            "consecutiveFailures": circuit.get("consecutive_failures", 0),
            "lastErrorKind": circuit.get("last_error_kind"),
            "retryInSeconds": circuit.get("retry_in_seconds"),
            "rateLimitedForSeconds": circuit.get("rate_limited_for_seconds"),
            "lastGoodStrategy": session.get("last_good_strategy"),
            "sessionsInUse": session.get("sessions_in_use", 0),
            "idleSessions": session.get("idle_sessions", 0),
        })

    return {
        "providers": providers,
        "scheduler": get_scheduler_status(),
    }
