from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from crmhub.accounting.api import router as accounting_router
from crmhub.api.deps import get_current_user
from crmhub.auditing.api import router as audit_router
from crmhub.contacts.api import router as contacts_router
from crmhub.core.config import get_settings
from crmhub.crm.api import router as crm_router
from crmhub.identity.api import router as identity_router
from crmhub.inventory.api import router as inventory_router
from crmhub.metrics import generate_metrics_payload, metrics_content_type
from crmhub.platform.security.actor import ActorUser
from crmhub.rbac.api import router as rbac_router
from crmhub.tasks.api import router as tasks_router

router = APIRouter()
router.include_router(identity_router)
router.include_router(contacts_router)
router.include_router(rbac_router)
router.include_router(audit_router)
router.include_router(crm_router)
router.include_router(tasks_router)
router.include_router(inventory_router)
router.include_router(accounting_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
def me(user: ActorUser = Depends(get_current_user)) -> dict[str, str | bool | list[str] | None]:
    return {
        "sub": user.user_id,
        "profile_id": str(user.profile_id) if user.profile_id else None,
        "roles": sorted(user.roles),
        "permissions": sorted(user.permissions),
        "is_admin": user.is_admin,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: ActorUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not user.can("system.metrics.read"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
