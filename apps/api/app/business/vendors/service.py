from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from app import audit
from app.business.vendors.models import Vendor, VendorHistory
from app.business.vendors.schemas import (
    VendorCreate,
    VendorHistoryRead,
    VendorOption,
    VendorRead,
    VendorUpdate,
)
from app.core.listing import apply_search
from app.core.rbac import Actor

LIST_LIMIT = 500
VENDOR_STATUSES = ("Active", "Inactive")


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip() or None
    return value


@dataclass(slots=True)
class VendorService:
    def list_vendors(
        self,
        session: Session,
        *,
        q: str | None,
        status_filter: str | None,
        category: str | None,
    ) -> list[VendorRead]:
        stmt: Select[tuple[Vendor]] = select(Vendor)
        stmt = apply_search(stmt, q, Vendor.name, Vendor.legal_name, Vendor.website)
        if status_filter in VENDOR_STATUSES:
            stmt = stmt.where(Vendor.status == status_filter)
        stmt = stmt.order_by(Vendor.name.asc())
        category = (category or "").strip()
        if not category:
            stmt = stmt.limit(LIST_LIMIT)
        rows = session.scalars(stmt).all()
        if category:
            rows = [row for row in rows if category in (row.categories or [])][:LIST_LIMIT]
        return [VendorRead.model_validate(row) for row in rows]

    def list_options(self, session: Session) -> list[VendorOption]:
        rows = session.execute(
            select(Vendor.id, Vendor.name).where(Vendor.status == "Active").order_by(Vendor.name.asc()).limit(LIST_LIMIT)
        ).all()
        return [VendorOption(id=row.id, name=row.name) for row in rows]

    def get_vendor(self, session: Session, vendor_id: uuid.UUID) -> VendorRead:
        return VendorRead.model_validate(self._get(session, vendor_id))

    def create_vendor(self, session: Session, actor: Actor, dto: VendorCreate) -> VendorRead:
        payload = {key: _clean(value) for key, value in dto.model_dump().items()}
        payload["name"] = dto.name
        payload["status"] = dto.status
        payload["categories"] = [item.strip() for item in dto.categories if item.strip()]
        vendor = Vendor(**payload)
        session.add(vendor)
        session.flush()
        self._history(session, actor, vendor.id, "created", f"Vendor created: {vendor.name}")
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="vendor",
            entity_id=str(vendor.id),
            action="vendor.created",
            before=None,
            after={"name": vendor.name, "status": vendor.status},
            session=session,
        )
        session.commit()
        session.refresh(vendor)
        return VendorRead.model_validate(vendor)

    def update_vendor(self, session: Session, actor: Actor, vendor_id: uuid.UUID, dto: VendorUpdate) -> VendorRead:
        vendor = self._get(session, vendor_id)
        provided = dto.model_dump(exclude_unset=True)
        if provided.get("name") is not None:
            provided["name"] = provided["name"].strip() or vendor.name
        if "categories" in provided:
            provided["categories"] = [item.strip() for item in provided["categories"] or [] if item.strip()]

        changes: dict[str, Any] = {}
        for key, value in provided.items():
            if key in ("name", "status") and value is None:
                continue
            value = value if key in ("categories", "name", "status") else _clean(value)
            if getattr(vendor, key) != value:
                changes[key] = value

        before = {key: getattr(vendor, key) for key in changes}
        for key, value in changes.items():
            setattr(vendor, key, value)

        for key in changes:
            if key == "status":
                self._history(
                    session,
                    actor,
                    vendor.id,
                    "status_changed",
                    f'Status changed from "{before[key]}" to "{changes[key]}"',
                    old_value=before[key],
                    new_value=changes[key],
                )
            else:
                self._history(
                    session,
                    actor,
                    vendor.id,
                    "field_changed",
                    f"{key} updated on {vendor.name}",
                    old_value=before[key],
                    new_value=changes[key],
                    metadata={"field": key},
                )

        if changes:
            audit.record(
                actor_user_id=actor.user_id,
                entity_type="vendor",
                entity_id=str(vendor.id),
                action="vendor.updated",
                before=before,
                after=changes,
                session=session,
            )
        session.commit()
        session.refresh(vendor)
        return VendorRead.model_validate(vendor)

    def delete_vendor(self, session: Session, actor: Actor, vendor_id: uuid.UUID) -> None:
        vendor = self._get(session, vendor_id)
        self._history(session, actor, vendor.id, "deleted", f"Vendor deleted: {vendor.name}")
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="vendor",
            entity_id=str(vendor.id),
            action="vendor.deleted",
            before={"name": vendor.name},
            after=None,
            session=session,
        )
        session.delete(vendor)
        session.commit()

    def list_history(self, session: Session, vendor_id: uuid.UUID) -> list[VendorHistoryRead]:
        rows = session.scalars(
            select(VendorHistory)
            .where(VendorHistory.vendor_id == str(vendor_id))
            .order_by(VendorHistory.created_at.desc(), VendorHistory.id.desc())
        ).all()
        return [VendorHistoryRead.model_validate(row) for row in rows]

    def _history(
        self,
        session: Session,
        actor: Actor,
        vendor_id: uuid.UUID,
        event_type: str,
        description: str,
        *,
        old_value: Any = None,
        new_value: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        session.add(
            VendorHistory(
                vendor_id=str(vendor_id),
                event_type=event_type,
                description=description,
                user_id=actor.user_id,
                user_name=actor.name,
                user_email=actor.email,
                old_value=old_value,
                new_value=new_value,
                history_metadata=metadata,
            )
        )

    def _get(self, session: Session, vendor_id: uuid.UUID) -> Vendor:
        vendor = session.get(Vendor, vendor_id)
        if vendor is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        return vendor


vendor_service = VendorService()
