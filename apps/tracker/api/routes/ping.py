from fastapi import APIRouter, Depends

from apps.tracker.dependencies.auth import CurrentUser, role_required
from apps.tracker.policy.authorization import STAFF_ROLES

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/secure",
    summary="Staff-only health check",
    dependencies=[Depends(role_required(*STAFF_ROLES))],
)
async def secure_ping(user: CurrentUser) -> dict[str, str]:
    return {"status": "ok", "user": user.username, "role": user.role.value}
