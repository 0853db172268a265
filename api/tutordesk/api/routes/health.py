from fastapi import APIRouter, Depends

from tutordesk.core.config import Settings, get_settings

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(settings: Settings = Depends(get_settings)) -> dict[str, object]:
    database = bool(settings.database_url)
    auth = bool(settings.supabase_url and settings.supabase_anon_key)
    return {
        "status": "ok" if database and auth else "degraded",
        "database_configured": database,
        "auth_configured": auth,
        "realtime_enabled": database and settings.realtime_enabled,
    }
