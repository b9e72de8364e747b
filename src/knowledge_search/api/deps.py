"""Shared request dependencies: caller identity and service singletons.

Authentication happens upstream; the proxy forwards the verified identity in
the `X-User-Id` and `X-User-Email` headers.
"""

from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request

from knowledge_search.config import settings
from knowledge_search.images.manager import ImageGenerationManager, get_manager
from knowledge_search.images.workflow import ImageGenerationWorkflow


@dataclass
class CurrentUser:
    user_id: str
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return bool(self.email) and self.email.lower() in settings.admin_email_list


def get_optional_user(
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
) -> CurrentUser | None:
    if not x_user_id:
        return None
    return CurrentUser(user_id=x_user_id, email=x_user_email)


def require_user(user: CurrentUser | None = Depends(get_optional_user)) -> CurrentUser:
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def require_admin(user: CurrentUser = Depends(require_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def get_image_manager() -> ImageGenerationManager:
    return get_manager()


_workflow: ImageGenerationWorkflow | None = None


def get_workflow(
    manager: ImageGenerationManager = Depends(get_image_manager),
) -> ImageGenerationWorkflow:
    global _workflow
    if _workflow is None or _workflow.manager is not manager:
        _workflow = ImageGenerationWorkflow(manager)
    return _workflow


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
