"""Card API routes: read-only views over the card store."""

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.errors import StoreError
from ..records.models import format_timestamp
from .backup_routes import get_backup_history, get_record_store
from .security import require_session_token

router = APIRouter(prefix="/api/cards", tags=["cards"])


@router.get("")
def search_cards(
    q: str = Query("", max_length=200),
    include_archived: bool = False,
    _token: str = Depends(require_session_token),
):
    """Cards whose name or store brand contains *q* (all cards when empty)."""
    try:
        cards = get_record_store().search_cards(q, include_archived=include_archived)
    except StoreError as e:
        raise HTTPException(status_code=500, detail={"code": e.code, "message": e.user_message})
    return {"cards": [c.to_dict() for c in cards], "total": len(cards)}


@router.get("/stats")
def card_stats(
    _token: str = Depends(require_session_token),
):
    """Card counts plus when the last backup was made."""
    try:
        stats = get_record_store().storage_stats()
    except StoreError as e:
        raise HTTPException(status_code=500, detail={"code": e.code, "message": e.user_message})
    last = get_backup_history().last_backup_at()
    return {
        **stats.to_dict(),
        "last_backup_at": format_timestamp(last) if last else None,
    }
