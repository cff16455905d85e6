from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from ..db import get_store
from ..models import ContactRecord
from ..repository import ContactStore

router = APIRouter(tags=["contacts"])


@router.get("/contacts", response_model=List[ContactRecord])
def list_contacts(store: ContactStore = Depends(get_store)) -> List[ContactRecord]:
    """Every stored contact, oldest first. Diagnostic only."""
    return [ContactRecord.from_contact(contact) for contact in store.list_all()]


__all__ = ["router"]
