"""Integration account management endpoints"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from issuerelay.models import IntegrationAccount
from issuerelay.models.base import get_db
from issuerelay.models.integration_account import IntegrationSettings, Provider

router = APIRouter(prefix="/api/integration-accounts", tags=["integration-accounts"])


class IntegrationAccountCreate(BaseModel):
    provider: str
    account_id: str
    workspace_id: Optional[str] = None
    access_token: Optional[str] = None
    settings: Dict[str, Any] = {}


class IntegrationAccountResponse(BaseModel):
    id: int
    provider: str
    account_id: str
    workspace_id: Optional[str] = None
    settings: Dict[str, Any]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


def _validate(account: IntegrationAccountCreate):
    if account.provider not in (Provider.SLACK, Provider.GITLAB):
        raise HTTPException(status_code=400, detail=f"Unsupported provider: {account.provider}")
    try:
        IntegrationSettings.model_validate(account.settings)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid settings: {e}")


@router.get("/", response_model=List[IntegrationAccountResponse])
def list_accounts(provider: Optional[str] = None, db: Session = Depends(get_db)):
    """List integration accounts"""
    query = db.query(IntegrationAccount)
    if provider:
        query = query.filter(IntegrationAccount.provider == provider)
    return query.all()


@router.post("/", response_model=IntegrationAccountResponse)
def create_account(account: IntegrationAccountCreate, db: Session = Depends(get_db)):
    """Connect a provider account"""
    _validate(account)
    existing = db.query(IntegrationAccount).filter(
        IntegrationAccount.provider == account.provider,
        IntegrationAccount.account_id == account.account_id,
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="Account already connected")

    db_account = IntegrationAccount(**account.model_dump())
    db.add(db_account)
    db.commit()
    db.refresh(db_account)
    return db_account


@router.get("/{account_pk}", response_model=IntegrationAccountResponse)
def get_account(account_pk: int, db: Session = Depends(get_db)):
    """Get a specific integration account"""
    account = db.query(IntegrationAccount).filter(IntegrationAccount.id == account_pk).first()
    if not account:
        raise HTTPException(status_code=404, detail="Integration account not found")
    return account


@router.put("/{account_pk}", response_model=IntegrationAccountResponse)
def update_account(
    account_pk: int, account: IntegrationAccountCreate, db: Session = Depends(get_db)
):
    """Update an integration account"""
    _validate(account)
    db_account = db.query(IntegrationAccount).filter(IntegrationAccount.id == account_pk).first()
    if not db_account:
        raise HTTPException(status_code=404, detail="Integration account not found")

    for key, value in account.model_dump().items():
        setattr(db_account, key, value)

    db.commit()
    db.refresh(db_account)
    return db_account


@router.delete("/{account_pk}")
def delete_account(account_pk: int, db: Session = Depends(get_db)):
    """Disconnect an integration account"""
    account = db.query(IntegrationAccount).filter(IntegrationAccount.id == account_pk).first()
    if not account:
        raise HTTPException(status_code=404, detail="Integration account not found")

    db.delete(account)
    db.commit()
    return {"message": "Integration account deleted successfully"}
