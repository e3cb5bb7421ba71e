"""Admin endpoints for the voucher inventory."""

import logging
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import verify_api_key
from .config import Settings, get_settings
from .database import VoucherRepository, get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(verify_api_key)])


class VoucherBody(BaseModel):
    """Request body for adding a single voucher."""
    code: str = Field(..., min_length=1, max_length=64, description="Voucher code")
    denomination: int = Field(..., description="Face value, one of the configured denominations")


class BulkVoucherBody(BaseModel):
    """Request body for loading many vouchers of one denomination."""
    denomination: int = Field(..., description="Face value shared by all codes")
    codes: Union[str, List[str]] = Field(
        ..., description="Codes as a list, or as text with one code per line"
    )

    def code_list(self) -> List[str]:
        if isinstance(self.codes, str):
            return self.codes.splitlines()
        return list(self.codes)


def _check_denomination(denomination: int, settings: Settings) -> None:
    if not settings.is_valid_denomination(denomination):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid denomination {denomination}. "
                   f"Expected one of: {', '.join(str(d) for d in settings.denominations)}",
        )


@router.post("/vouchers", status_code=201)
async def add_voucher(
    body: VoucherBody,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Add one unused voucher to the inventory."""
    _check_denomination(body.denomination, settings)
    code = body.code.strip()
    if not code:
        raise HTTPException(status_code=400, detail="Voucher code is required")

    repo = VoucherRepository(db)
    if await repo.get(code) is not None:
        raise HTTPException(status_code=409, detail=f"Voucher {code} already exists")

    voucher = await repo.add(code, body.denomination)
    await db.commit()
    return {"success": True, "voucher": voucher.to_dict()}


@router.post("/vouchers/bulk")
async def add_vouchers_bulk(
    body: BulkVoucherBody,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Load many vouchers at once.

    Codes that already exist (or repeat within the upload) are reported in
    ``duplicates`` and skipped; the rest are added.
    """
    _check_denomination(body.denomination, settings)

    added, duplicates = await VoucherRepository(db).add_many(body.code_list(), body.denomination)
    await db.commit()
    return {
        "success": True,
        "denomination": body.denomination,
        "added": len(added),
        "codes": [v.code for v in added],
        "duplicates": duplicates,
    }


@router.get("/vouchers")
async def list_vouchers(
    denomination: Optional[int] = Query(default=None, description="Only this face value"),
    only_unused: bool = Query(default=False, description="Hide consumed vouchers"),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """List vouchers ordered by code."""
    vouchers = await VoucherRepository(db).list_vouchers(
        denomination=denomination,
        only_unused=only_unused,
        limit=limit,
        offset=offset,
    )
    return {"success": True, "count": len(vouchers), "vouchers": [v.to_dict() for v in vouchers]}


@router.get("/vouchers/summary")
async def voucher_summary(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Available voucher count for every configured denomination."""
    available = await VoucherRepository(db).count_available()
    return {
        "success": True,
        "currency": settings.currency,
        "available": [
            {"denomination": d, "count": available.get(d, 0)} for d in settings.denominations
        ],
    }


@router.get("/denominations")
async def list_denominations(settings: Settings = Depends(get_settings)):
    return {"currency": settings.currency, "denominations": list(settings.denominations)}
