from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import asc, select
from sqlalchemy.orm import Session

from robojs.api.deps import get_current_user
from robojs.core.db import get_db
from robojs.models.collection import Collection
from robojs.models.user import User
from robojs.schemas.entities import CollectionOut, collection_out

router = APIRouter(prefix="/collections", tags=["collections"])


@router.get("", response_model=List[CollectionOut])
def list_collections(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = db.execute(
        select(Collection)
        .where(Collection.user_id == current_user.id)
        .order_by(asc(Collection.created_at), asc(Collection.id))
    ).scalars().all()
    return [collection_out(c) for c in rows]
