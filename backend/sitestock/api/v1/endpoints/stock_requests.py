"""SiteStock — Stock request endpoints (project demand)."""
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from sitestock.api.deps import CurrentUser, get_db, require_permission
from sitestock.core.exceptions import InventoryError
from sitestock.core.permissions import PERM_REQUEST_CREATE, PERM_WAREHOUSE_EDIT, PERM_WAREHOUSE_VIEW
from sitestock.db.transaction import commit_and_dispatch
from sitestock.schemas.common import ApiResponse, Meta
from sitestock.schemas.stock_request import (
    DeliveryOutcomeResponse,
    DeliveryResponse,
    StockRequestCreate,
    StockRequestDeliver,
    StockRequestReject,
    StockRequestResponse,
)
from sitestock.services.stock_request_service import StockRequestService

router = APIRouter()


@router.get("", response_model=ApiResponse[list[StockRequestResponse]])
async def list_stock_requests(
    project_id: UUID | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_VIEW)),
    db: AsyncSession = Depends(get_db),
):
    """List stock requests; open ones first."""
    requests, total = await StockRequestService.list_requests(
        db, user.tenant_id, project_id=project_id, status=status_filter, page=page, page_size=page_size
    )
    return ApiResponse(
        data=[StockRequestResponse.model_validate(r) for r in requests],
        meta=Meta(page=page, page_size=page_size, total_count=total),
    )


@router.post("", response_model=ApiResponse[StockRequestResponse], status_code=status.HTTP_201_CREATED)
async def create_stock_request(
    body: StockRequestCreate,
    user: CurrentUser = Depends(require_permission(PERM_REQUEST_CREATE)),
    db: AsyncSession = Depends(get_db),
):
    """Request material from the central pool for a project."""
    try:
        request = await StockRequestService.create(
            db, user.tenant_id, user.id,
            project_id=body.project_id,
            stock_item_id=body.stock_item_id,
            quantity=body.quantity,
            notes=body.notes,
        )
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)
    return ApiResponse(data=StockRequestResponse.model_validate(request))


@router.post("/{request_id}/approve", response_model=ApiResponse[StockRequestResponse])
async def approve_stock_request(
    request_id: UUID,
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    try:
        request = await StockRequestService.approve(db, user.tenant_id, user.id, request_id)
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)
    return ApiResponse(data=StockRequestResponse.model_validate(request))


@router.post("/{request_id}/reject", response_model=ApiResponse[StockRequestResponse])
async def reject_stock_request(
    request_id: UUID,
    body: StockRequestReject,
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    try:
        request = await StockRequestService.reject(db, user.tenant_id, user.id, request_id, reason=body.reason)
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)
    return ApiResponse(data=StockRequestResponse.model_validate(request))


@router.post("/{request_id}/deliver", response_model=ApiResponse[DeliveryOutcomeResponse])
async def deliver_stock_request(
    request_id: UUID,
    body: StockRequestDeliver,
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    """
    Ship material from the pool to the project.
    Returns 409 when the pool cannot cover the quantity; nothing changes in that case.
    """
    try:
        outcome = await StockRequestService.deliver(
            db, user.tenant_id, user.id, request_id,
            quantity=body.quantity,
            notes=body.notes,
            spawn_purchase_for_remainder=body.spawn_purchase_for_remainder,
        )
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)
    return ApiResponse(data=DeliveryOutcomeResponse.model_validate(outcome))


@router.get("/{request_id}/deliveries", response_model=ApiResponse[list[DeliveryResponse]])
async def list_deliveries(
    request_id: UUID,
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_VIEW)),
    db: AsyncSession = Depends(get_db),
):
    try:
        deliveries = await StockRequestService.list_deliveries(db, user.tenant_id, request_id)
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=[DeliveryResponse.model_validate(d) for d in deliveries])
