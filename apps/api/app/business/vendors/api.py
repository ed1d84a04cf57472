from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.envelope import Envelope, ItemsPage, items, ok
from app.business.vendors.schemas import VendorCreate, VendorHistoryRead, VendorOption, VendorRead, VendorUpdate
from app.business.vendors.service import vendor_service
from app.core.database import get_db
from app.core.rbac import Actor, get_current_actor


router = APIRouter(prefix="/crm/vendors", tags=["vendors"])


@router.get("", response_model=Envelope[ItemsPage[VendorRead]])
def list_vendors(
    q: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    category: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(vendor_service.list_vendors(db, q=q, status_filter=status_filter, category=category))


@router.get("/options", response_model=Envelope[ItemsPage[VendorOption]])
def vendor_options(db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return items(vendor_service.list_options(db))


@router.post("", response_model=Envelope[VendorRead], status_code=status.HTTP_201_CREATED)
def create_vendor(
    payload: VendorCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(vendor_service.create_vendor(db, actor, payload))


@router.get("/{vendor_id}", response_model=Envelope[VendorRead])
def get_vendor(vendor_id: uuid.UUID, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return ok(vendor_service.get_vendor(db, vendor_id))


@router.put("/{vendor_id}", response_model=Envelope[VendorRead])
def update_vendor(
    vendor_id: uuid.UUID,
    payload: VendorUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(vendor_service.update_vendor(db, actor, vendor_id, payload))


@router.delete("/{vendor_id}", response_model=Envelope[dict[str, bool]])
def delete_vendor(
    vendor_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    vendor_service.delete_vendor(db, actor, vendor_id)
    return ok({"ok": True})


@router.get("/{vendor_id}/history", response_model=Envelope[ItemsPage[VendorHistoryRead]])
def vendor_history(vendor_id: uuid.UUID, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return items(vendor_service.list_history(db, vendor_id))
