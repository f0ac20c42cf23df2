"""SiteStock — Stock pool endpoints: catalogue, movements, KPIs."""
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from sitestock.api.deps import CurrentUser, get_db, require_permission
from sitestock.core.exceptions import InventoryError
from sitestock.core.permissions import PERM_FINANCIAL_VIEW, PERM_WAREHOUSE_EDIT, PERM_WAREHOUSE_VIEW
from sitestock.db.transaction import commit_and_dispatch
from sitestock.schemas.common import ApiResponse, Meta
from sitestock.schemas.stock import (
    MovementCreate,
    MovementResponse,
    MovementResult,
    ReconciliationResponse,
    StockItemCreate,
    StockItemReorder,
    StockItemResponse,
    StockItemUpdate,
    StockKpis,
)
from sitestock.services.ledger_service import LedgerService
from sitestock.services.stock_item_service import StockItemService

router = APIRouter()


@router.get("/items", response_model=ApiResponse[list[StockItemResponse]])
async def list_items(
    status_filter: str | None = Query(None, alias="status"),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_VIEW)),
    db: AsyncSession = Depends(get_db),
):
    """List stock items in display order."""
    items, total = await StockItemService.list_items(
        db, user.tenant_id, status=status_filter, search=search, page=page, page_size=page_size
    )
    return ApiResponse(
        data=[StockItemResponse.model_validate(i) for i in items],
        meta=Meta(page=page, page_size=page_size, total_count=total),
    )


@router.post("/items", response_model=ApiResponse[StockItemResponse], status_code=status.HTTP_201_CREATED)
async def create_item(
    body: StockItemCreate,
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    try:
        item = await StockItemService.create_item(
            db, user.tenant_id,
            name=body.name,
            unit=body.unit,
            min_quantity=body.min_quantity,
            supplier_id=body.supplier_id,
        )
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)
    return ApiResponse(data=StockItemResponse.model_validate(item))


@router.patch("/items/reorder", response_model=ApiResponse[dict])
async def reorder_items(
    body: StockItemReorder,
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    """Set the display order of catalogue items."""
    try:
        await StockItemService.reorder_items(db, user.tenant_id, {p.id: p.order for p in body.items})
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)
    return ApiResponse(data={"reordered": len(body.items)})


@router.patch("/items/{item_id}", response_model=ApiResponse[StockItemResponse])
async def update_item(
    item_id: UUID,
    body: StockItemUpdate,
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    """Edit descriptive fields. Balance and cost are changed only by movements."""
    try:
        item = await StockItemService.update_item(
            db, user.tenant_id, item_id, **body.model_dump(exclude_unset=True)
        )
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)
    return ApiResponse(data=StockItemResponse.model_validate(item))


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(
    item_id: UUID,
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    """Delete an item with no ledger or workflow history. Blocked (400) otherwise."""
    try:
        await StockItemService.delete_item(db, user.tenant_id, item_id)
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)


@router.post(
    "/items/{item_id}/movements",
    response_model=ApiResponse[MovementResult],
    status_code=status.HTTP_201_CREATED,
)
async def create_movement(
    item_id: UUID,
    body: MovementCreate,
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    """
    Record a manual ENTRY or EXIT.
    EXIT beyond the available balance is rejected with 409 and nothing is written.
    """
    try:
        movement, item = await LedgerService.record_movement(
            db, user.tenant_id, item_id, body.type, body.quantity,
            unit_price=body.unit_price,
            actor_id=user.id,
            date=body.date,
            responsible=body.responsible,
            origin_or_destination=body.origin_or_destination,
            project_id=body.project_id,
            invoice_number=body.invoice_number,
            supplier_id=body.supplier_id,
            notes=body.notes,
        )
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await commit_and_dispatch(db)
    return ApiResponse(data=MovementResult(
        movement=MovementResponse.model_validate(movement),
        item=StockItemResponse.model_validate(item),
    ))


@router.get("/items/{item_id}/movements", response_model=ApiResponse[list[MovementResponse]])
async def list_item_movements(
    item_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_VIEW)),
    db: AsyncSession = Depends(get_db),
):
    try:
        movements, total = await LedgerService.item_movements(
            db, user.tenant_id, item_id, page=page, page_size=page_size
        )
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(
        data=[MovementResponse.model_validate(m) for m in movements],
        meta=Meta(page=page, page_size=page_size, total_count=total),
    )


@router.get("/items/{item_id}/reconcile", response_model=ApiResponse[ReconciliationResponse])
async def reconcile_item(
    item_id: UUID,
    user: CurrentUser = Depends(require_permission(PERM_FINANCIAL_VIEW)),
    db: AsyncSession = Depends(get_db),
):
    """Recompute balance and average cost from the movement log and compare with the cached values."""
    try:
        result = await LedgerService.reconcile(db, user.tenant_id, item_id)
    except InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ApiResponse(data=ReconciliationResponse.model_validate(result))


@router.get("/movements", response_model=ApiResponse[list[MovementResponse]])
async def list_movements(
    project_id: UUID | None = Query(None),
    movement_type: str | None = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_VIEW)),
    db: AsyncSession = Depends(get_db),
):
    """Tenant-wide movement log, newest first."""
    movements, total = await LedgerService.all_movements(
        db, user.tenant_id,
        project_id=project_id,
        movement_type=movement_type,
        page=page,
        page_size=page_size,
    )
    return ApiResponse(
        data=[MovementResponse.model_validate(m) for m in movements],
        meta=Meta(page=page, page_size=page_size, total_count=total),
    )


@router.get("/kpis", response_model=ApiResponse[StockKpis])
async def stock_kpis(
    user: CurrentUser = Depends(require_permission(PERM_WAREHOUSE_VIEW)),
    db: AsyncSession = Depends(get_db),
):
    data = await LedgerService.kpis(db, user.tenant_id)
    return ApiResponse(data=StockKpis(**data))
