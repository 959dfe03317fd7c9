from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from payroll_fx.models import (
    BatchConversionIn,
    BatchConversionItemOut,
    BulkImportIn,
    BulkImportOut,
    ConversionIn,
    ConversionOut,
    ConversionRecordOut,
    ExchangeRateIn,
    ExchangeRateOut,
    ExchangeRateUpdateIn,
    OrgCurrencyConfigOut,
    OrgCurrencyConfigUpdateIn,
    ResolvedRateOut,
)
from payroll_fx.services.currency_service import CurrencyService

"""Currency router.

Tenant and actor come from the X-Organization-Id / X-User-Id headers; the
permission layer in front of this service is responsible for vouching for
them. Domain errors (CurrencyError subclasses) are mapped to HTTP responses
by the handlers registered in main.create_app.
"""

router = APIRouter(prefix="/currency", tags=["currency"])


# Dependencies -----------------------------------------------------


def get_currency_service(request: Request) -> CurrencyService:
    return request.app.state.currency_service


def get_organization_id(
    x_organization_id: str = Header(..., min_length=1, max_length=64),
) -> str:
    return x_organization_id


def get_actor(x_user_id: Optional[str] = Header(None, max_length=64)) -> Optional[str]:
    return x_user_id


# Rates ------------------------------------------------------------
@router.get("/", response_model=List[ExchangeRateOut], summary="List active rates")
async def list_active_rates(
    org_id: str = Depends(get_organization_id),
    svc: CurrencyService = Depends(get_currency_service),
):
    return svc.get_active_rates(org_id)


@router.get(
    "/current/{from_currency}/{to_currency}",
    response_model=ResolvedRateOut,
    summary="Resolve the rate for a pair (direct, inverted or triangulated)",
)
async def get_current_rate(
    from_currency: str,
    to_currency: str,
    as_of: Optional[date] = Query(None, alias="date", description="Defaults to today"),
    org_id: str = Depends(get_organization_id),
    svc: CurrencyService = Depends(get_currency_service),
):
    resolved = svc.get_exchange_rate(org_id, from_currency, to_currency, as_of)
    return ResolvedRateOut(**asdict(resolved), as_of_date=as_of or svc.today())


@router.get(
    "/historical/{from_currency}/{to_currency}",
    response_model=List[ExchangeRateOut],
    summary="Historical rate rows for a pair, newest first",
)
async def get_historical_rates(
    from_currency: str,
    to_currency: str,
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    org_id: str = Depends(get_organization_id),
    svc: CurrencyService = Depends(get_currency_service),
):
    return svc.get_historical_rates(
        org_id,
        from_currency,
        to_currency,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/", response_model=ExchangeRateOut, status_code=201, summary="Create a rate"
)
async def create_rate(
    payload: ExchangeRateIn,
    org_id: str = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    svc: CurrencyService = Depends(get_currency_service),
):
    return svc.create_exchange_rate(org_id, created_by=actor, **payload.model_dump())


@router.post(
    "/bulk-import",
    response_model=BulkImportOut,
    status_code=201,
    summary="Create many rates; per-row errors are reported, not raised",
)
async def bulk_import(
    payload: BulkImportIn,
    fail_fast: bool = Query(False, description="Stop at the first invalid row"),
    org_id: str = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    svc: CurrencyService = Depends(get_currency_service),
):
    return svc.bulk_import_rates(
        org_id, payload.rates, created_by=actor, fail_fast=fail_fast
    )


# Conversions ------------------------------------------------------
@router.post("/convert", response_model=ConversionOut, summary="Convert an amount")
async def convert(
    payload: ConversionIn,
    org_id: str = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    svc: CurrencyService = Depends(get_currency_service),
):
    result = svc.convert_amount(
        org_id,
        payload.amount,
        payload.from_currency,
        payload.to_currency,
        as_of=payload.as_of_date,
        rounding_method=payload.rounding_method,
        decimal_places=payload.decimal_places,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        created_by=actor,
    )
    return asdict(result)


@router.post(
    "/batch-convert",
    response_model=List[BatchConversionItemOut],
    summary="Convert many amounts; each entry succeeds or fails on its own",
)
async def batch_convert(
    payload: BatchConversionIn,
    org_id: str = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    svc: CurrencyService = Depends(get_currency_service),
):
    entries = []
    for item in payload.conversions:
        entry = item.model_dump()
        entry["as_of"] = entry.pop("as_of_date")
        entry["created_by"] = actor
        entries.append(entry)
    return svc.batch_convert(org_id, entries)


@router.get(
    "/conversions/{reference_type}/{reference_id}",
    response_model=List[ConversionRecordOut],
    summary="Ledger entries recorded for a reference entity",
)
async def get_conversion_history(
    reference_type: str,
    reference_id: str,
    org_id: str = Depends(get_organization_id),
    svc: CurrencyService = Depends(get_currency_service),
):
    return svc.get_conversion_history(org_id, reference_type, reference_id)


# Organization config ----------------------------------------------
@router.get("/config", response_model=OrgCurrencyConfigOut, summary="Org currency config")
async def get_config(
    org_id: str = Depends(get_organization_id),
    svc: CurrencyService = Depends(get_currency_service),
):
    return svc.get_org_config(org_id)


@router.put(
    "/config", response_model=OrgCurrencyConfigOut, summary="Update org currency config"
)
async def update_config(
    payload: OrgCurrencyConfigUpdateIn,
    org_id: str = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    svc: CurrencyService = Depends(get_currency_service),
):
    return svc.update_org_config(
        org_id, payload.model_dump(exclude_none=True), updated_by=actor
    )


# Cache administration ---------------------------------------------
@router.get("/cache/stats", summary="Resolution cache statistics")
async def cache_stats(svc: CurrencyService = Depends(get_currency_service)):
    return svc.get_cache_stats()


@router.post("/cache/clear", summary="Drop every cached resolution")
async def cache_clear(svc: CurrencyService = Depends(get_currency_service)):
    svc.clear_cache()
    return {"status": "cleared"}


# Routes with a bare {rate_id} segment go last so /config and friends win.
@router.put("/{rate_id}", response_model=ExchangeRateOut, summary="Edit a rate in place")
async def update_rate(
    rate_id: int,
    payload: ExchangeRateUpdateIn,
    org_id: str = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    svc: CurrencyService = Depends(get_currency_service),
):
    changes = payload.model_dump(exclude_unset=True)
    return svc.update_exchange_rate(org_id, rate_id, changes, updated_by=actor)


@router.delete(
    "/{rate_id}",
    response_model=ExchangeRateOut,
    summary="Soft-delete a rate (closes its validity window)",
)
async def delete_rate(
    rate_id: int,
    org_id: str = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    svc: CurrencyService = Depends(get_currency_service),
):
    return svc.delete_exchange_rate(org_id, rate_id, deleted_by=actor)
