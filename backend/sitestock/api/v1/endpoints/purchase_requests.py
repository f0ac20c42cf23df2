"""SiteStock — Purchase request endpoints (pool replenishment)."""
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from sitestock.api.deps import CurrentUser, get_db, require_permission
from sitestock.core.exceptions import InventoryError
from sitestock.core.permissions import PERM_FINANCIAL_EDIT, PERM_WAREHOUSE_EDIT, PERM_WAREHOUSE_VIEW
from sitestock.db.transaction import commit_and_dispatch
from sitestock.schemas.common import ApiResponse, Meta
from sitestock.schemas.purchase_request import PurchaseComplete, PurchaseRequestCreate, PurchaseRequestResponse
from sitestock.services.purchase_request_service import PurchaseRequestService

router = APIRouter()


@router.get("", response_model=ApiResponse[list[PurchaseRequestResponse]])
async def list_purchase_requests(
    status_filter: str | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_VIEW)),
    db: AsyncSession = Depends(get_db),
):
    """Pending first, then by priority (high first), then newest."""
    purchases, total = await PurchaseRequestService.list_requests(
        db, user.tenant_id, status=status_filter, page=page, page_size=page_size
    )
    return ApiResponse(
        data=[PurchaseRequestResponse.model_validate(p) for p in purchases],
        meta=Meta(page=page, page_size=page_size, total_count=total),
    )


@router.post("", response_model=ApiResponse[PurchaseRequestResponse], status_code=status.HTTP_201_CREATED)
async def create_purchase_request(
    body: PurchaseRequestCreate,
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    try:
        purchase = await PurchaseRequestService.create(
            db, user.tenant_id, user.id,
            stock_item_id=body.stock_item_id,
            quantity=body.quantity,
            priority=body.priority,
            notes=body.notes,
            originating_stock_request_id=body.originating_stock_request_id,
        )
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)
    return ApiResponse(data=PurchaseRequestResponse.model_validate(purchase))


@router.post("/{request_id}/order", response_model=ApiResponse[PurchaseRequestResponse])
async def order_purchase_request(
    request_id: UUID,
    user: CurrentUser = Depends(require_permission(PERM_FINANCIAL_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    try:
        purchase = await PurchaseRequestService.mark_ordered(db, user.tenant_id, user.id, request_id)
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)
    return ApiResponse(data=PurchaseRequestResponse.model_validate(purchase))


@router.post("/{request_id}/complete", response_model=ApiResponse[PurchaseRequestResponse])
async def complete_purchase_request(
    request_id: UUID,
    body: PurchaseComplete,
    user: CurrentUser = Depends(require_permission(PERM_FINANCIAL_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    """Mark goods received; credits the pool at the purchase price."""
    try:
        purchase = await PurchaseRequestService.complete(
            db, user.tenant_id, user.id, request_id,
            unit_price=body.unit_price,
            invoice_number=body.invoice_number,
            supplier_id=body.supplier_id,
        )
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)
    return ApiResponse(data=PurchaseRequestResponse.model_validate(purchase))


@router.post("/{request_id}/cancel", response_model=ApiResponse[PurchaseRequestResponse])
async def cancel_purchase_request(
    request_id: UUID,
    user: CurrentUser = Depends(require_permission(PERM_FINANCIAL_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a purchase (only allowed in PENDING or ORDERED status)."""
    try:
        purchase = await PurchaseRequestService.cancel(db, user.tenant_id, user.id, request_id)
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)
    return ApiResponse(data=PurchaseRequestResponse.model_validate(purchase))
