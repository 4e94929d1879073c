# Portfolio API - REST endpoints for the vault and price cache
#
# - Status / setup / unlock / lock
# - Read and replace the decrypted portfolio document
# - Export / import the encrypted file
# - History snapshots, price refresh, valuation
#
# Every data endpoint goes through VaultStore, whose methods enforce the
# unlocked-session gate; LockedError is mapped to 401 in main.py.

from datetime import date
from typing import Any, Dict, Literal

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from ..exceptions import AuthenticationError, SchemaError
from ..portfolio.models import PortfolioDocument
from ..prices import (
    PriceAggregator,
    category_totals,
    convert_valuation,
    create_history_snapshot,
    portfolio_total,
    valuate,
)
from ..prices.fx_rates import REFERENCE_CURRENCY
from ..vault import VaultStore

MAX_IMPORT_BYTES = 10 * 1024 * 1024

# Currencies the UI can display valuations in
DisplayCurrency = Literal["USD", "GBP"]

router = APIRouter(prefix="/api", tags=["portfolio"])


# Request Models
class PasswordRequest(BaseModel):
    password: str


# Dependencies
def get_vault(request: Request) -> VaultStore:
    return request.app.state.vault


def get_aggregator(request: Request) -> PriceAggregator:
    return request.app.state.aggregator


# Endpoints

@router.get("/status")
def get_status(vault: VaultStore = Depends(get_vault)):
    """Whether a vault file exists and whether it is unlocked."""
    return vault.status().to_dict()


@router.post("/setup")
def setup(request: PasswordRequest, vault: VaultStore = Depends(get_vault)):
    """Create the vault (first run) and unlock it."""
    document = vault.setup(request.password)
    return {"success": True, "data": document.to_dict()}


@router.post("/unlock")
def unlock(request: PasswordRequest, vault: VaultStore = Depends(get_vault)):
    document = vault.unlock(request.password)
    return {"success": True, "data": document.to_dict()}


@router.post("/lock")
def lock(vault: VaultStore = Depends(get_vault)):
    vault.lock()
    return {"success": True}


@router.get("/portfolio")
def read_portfolio(vault: VaultStore = Depends(get_vault)):
    return vault.read().to_dict()


@router.put("/portfolio")
def write_portfolio(
    payload: Dict[str, Any] = Body(...),
    vault: VaultStore = Depends(get_vault),
):
    """Replace the whole document and re-encrypt it."""
    vault.write(PortfolioDocument.from_dict(payload))
    return {"success": True}


@router.get("/export")
def export_vault(vault: VaultStore = Depends(get_vault)):
    """Download the encrypted vault file as-is."""
    blob = vault.export()
    filename = f"portfolio-{date.today().isoformat()}.enc"
    return Response(
        content=blob,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _import_too_large() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail="Import file too large"
    )


async def _read_limited_body(request: Request, limit: int) -> bytes:
    """Read the request body, refusing it as soon as it exceeds ``limit`` bytes."""
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise _import_too_large()

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise _import_too_large()
    return bytes(body)


@router.post("/import")
async def import_vault(request: Request, vault: VaultStore = Depends(get_vault)):
    """
    Replace the vault with an uploaded encrypted file.

    The file must decrypt with the current session password.
    """
    blob = await _read_limited_body(request, MAX_IMPORT_BYTES)

    try:
        document = await run_in_threadpool(vault.import_blob, blob)
    except AuthenticationError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot decrypt file with current password"
        )
    except SchemaError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid database file format"
        )

    return {"success": True, "data": document.to_dict()}


@router.post("/history")
def add_history_snapshot(vault: VaultStore = Depends(get_vault)):
    """Value the current holdings and append a history snapshot."""
    document = vault.read()
    snapshot = create_history_snapshot(valuate(document.holdings, document.price_cache))
    history = vault.add_history_snapshot(snapshot)
    return {
        "success": True,
        "snapshot": snapshot.to_dict(),
        "history": [s.to_dict() for s in history],
    }


@router.delete("/history/{index}")
def delete_history_entry(index: int, vault: VaultStore = Depends(get_vault)):
    history = vault.delete_history_entry(index)
    return {"success": True, "history": [s.to_dict() for s in history]}


@router.post("/prices/refresh")
async def refresh_prices(
    vault: VaultStore = Depends(get_vault),
    aggregator: PriceAggregator = Depends(get_aggregator),
):
    """Refresh stale prices for the session's holdings and persist them."""
    document = await run_in_threadpool(vault.read)
    refreshed = await aggregator.refresh(document.holdings, document.price_cache)
    merged = await run_in_threadpool(vault.apply_price_cache, refreshed)
    return {
        "success": True,
        "priceCache": {k: v.to_dict() for k, v in merged.items()},
    }


@router.get("/prices/providers")
def provider_stats(aggregator: PriceAggregator = Depends(get_aggregator)):
    return {"providers": aggregator.get_stats()}


@router.get("/valuation")
async def get_valuation(
    currency: DisplayCurrency = "USD",
    vault: VaultStore = Depends(get_vault),
    aggregator: PriceAggregator = Depends(get_aggregator),
):
    """
    Valued holdings and totals.

    Prices are stored in USD; ``currency=GBP`` scales every price and total
    by the current USD/GBP rate.
    """
    document = await run_in_threadpool(vault.read)
    valued = valuate(document.holdings, document.price_cache)
    rate = 1.0
    if currency != REFERENCE_CURRENCY:
        rate = await aggregator.get_rate(currency)
        valued = convert_valuation(valued, rate)
    return {
        "currency": currency,
        "rate": rate,
        "holdings": [item.to_dict() for item in valued],
        "categoryTotals": {c.value: v for c, v in category_totals(valued).items()},
        "totalValue": portfolio_total(valued),
    }
