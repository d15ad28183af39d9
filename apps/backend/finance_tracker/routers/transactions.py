"""Read-only transaction listing.

Transaction CRUD lives in another service; this router only exposes what the
recurring processor produced next to any other records of the caller.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from finance_tracker.core.database import get_db
from finance_tracker.core.deps import get_current_user_id
from finance_tracker import models
from finance_tracker.schemas import TransactionOut

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=list[TransactionOut])
def list_transactions(
    response: Response,
    source: Optional[models.TransactionSource] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    q = db.query(models.Transaction).filter(models.Transaction.user_id == user_id)
    if source is not None:
        q = q.filter(models.Transaction.source == source)
    response.headers["X-Total-Count"] = str(q.count())
    return (
        q.order_by(models.Transaction.occurred_at.desc(), models.Transaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
