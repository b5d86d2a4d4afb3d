from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.api.deps import get_current_user_id
from app.core.database import get_db
from app.schemas import LibraryItemResponse, TemplateAccessResponse
from app.services import purchase

router = APIRouter(tags=["library"])


@router.get("/library", response_model=list[LibraryItemResponse])
def my_library(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Templates the caller has paid for."""
    return [LibraryItemResponse(**item._asdict()) for item in purchase.list_library(db, user_id)]


@router.get("/templates/{template_id}/access", response_model=TemplateAccessResponse)
def template_access(
    template_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    has_access, reason = purchase.template_access(db, user_id, template_id)
    return TemplateAccessResponse(template_id=template_id, has_access=has_access, reason=reason)
