"""
api/endpoints/rule_routes.py — Per-tenant location rules.

GET    /rules/{tenant}/exclusions            — List deny-list rules
POST   /rules/{tenant}/exclusions            — Add a deny-list rule
DELETE /rules/{tenant}/exclusions/{rule_id}  — Remove a deny-list rule
GET    /rules/{tenant}/inclusions            — List allow-list rules
POST   /rules/{tenant}/inclusions            — Add an allow-list rule
DELETE /rules/{tenant}/inclusions/{rule_id}  — Remove an allow-list rule
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.db import repository
from app.db.session import get_db
from api.schemas import ExclusionIn, ExclusionOut, InclusionIn, InclusionOut, OKResponse

logger = logging.getLogger(__name__)
router = APIRouter()


def _require_location(prefecture, city) -> None:
    if not (prefecture or "").strip() and not (city or "").strip():
        raise HTTPException(status_code=422, detail="A rule needs a prefecture, a city, or both.")


# ── Exclusions ────────────────────────────────────────────────────────────────

@router.get("/{tenant}/exclusions", response_model=list[ExclusionOut], summary="List exclusion rules")
def list_exclusions(tenant: str, db: Session = Depends(get_db)):
    return repository.get_exclusions(db, tenant)


@router.post("/{tenant}/exclusions", response_model=ExclusionOut, status_code=201, summary="Add exclusion rule")
def create_exclusion(tenant: str, payload: ExclusionIn, db: Session = Depends(get_db)):
    _require_location(payload.prefecture, payload.city)
    return repository.add_exclusion(db, tenant, payload.prefecture, payload.city, payload.reason)


@router.delete("/{tenant}/exclusions/{rule_id}", response_model=OKResponse, summary="Delete exclusion rule")
def remove_exclusion(tenant: str, rule_id: int, db: Session = Depends(get_db)):
    if not repository.delete_exclusion(db, tenant, rule_id):
        raise HTTPException(status_code=404, detail=f"Exclusion {rule_id} not found.")
    return OKResponse(message=f"Exclusion {rule_id} deleted.")


# ── Inclusions ────────────────────────────────────────────────────────────────

@router.get("/{tenant}/inclusions", response_model=list[InclusionOut], summary="List inclusion rules")
def list_inclusions(tenant: str, db: Session = Depends(get_db)):
    return repository.get_inclusions(db, tenant)


@router.post("/{tenant}/inclusions", response_model=InclusionOut, status_code=201, summary="Add inclusion rule")
def create_inclusion(tenant: str, payload: InclusionIn, db: Session = Depends(get_db)):
    _require_location(payload.prefecture, payload.city)
    return repository.add_inclusion(db, tenant, payload.prefecture, payload.city, payload.memo)


@router.delete("/{tenant}/inclusions/{rule_id}", response_model=OKResponse, summary="Delete inclusion rule")
def remove_inclusion(tenant: str, rule_id: int, db: Session = Depends(get_db)):
    if not repository.delete_inclusion(db, tenant, rule_id):
        raise HTTPException(status_code=404, detail=f"Inclusion {rule_id} not found.")
    return OKResponse(message=f"Inclusion {rule_id} deleted.")
