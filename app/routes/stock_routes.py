import time
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_current_actor, get_db
from app.schemas.base_schema import BloodType
from app.schemas.stock_schema import (
    ActiveAlertResponse,
    ActiveAlertsResponse,
    BloodStockDetailResponse,
    BloodStockResponse,
    ExpiredUnitsRemoval,
    StockAlertResponse,
    StockMovementResponse,
    StockOverviewResponse,
    StockStatus,
    StockUpdate,
)
from app.services.stock_service import StockLedgerService
from app.utils.exceptions import HANDLED_ERRORS
from app.utils.logging_config import get_logger, log_performance_metric
from app.utils.pagination import PaginatedResponse, PaginationParams, get_pagination_params

logger = get_logger(__name__)

router = APIRouter(prefix="/stock", tags=["blood stock"])


@router.get("/", response_model=StockOverviewResponse)
async def get_stock_overview(db: AsyncSession = Depends(get_db)):
    """Current ledger for every blood type, with totals by status."""
    try:
        ledgers = await StockLedgerService(db).list_ledgers()
        stocks = [BloodStockResponse.model_validate(ledger) for ledger in ledgers]

        return StockOverviewResponse(
            stocks=stocks,
            total_available_units=sum(stock.available_units for stock in stocks),
            critical_count=sum(1 for stock in stocks if stock.status == StockStatus.CRITICAL),
            low_count=sum(1 for stock in stocks if stock.status == StockStatus.LOW),
        )

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to load stock overview: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load stock overview",
        )


@router.post(
    "/initialize",
    response_model=List[BloodStockResponse],
    status_code=status.HTTP_201_CREATED,
)
async def initialize_stock(
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    try:
        ledgers = await StockLedgerService(db).initialize_all()
        logger.info(
            "Stock ledgers initialized",
            extra={"extra_fields": {"event_type": "stock_initialized", "count": len(ledgers)}},
        )
        return [BloodStockResponse.model_validate(ledger) for ledger in ledgers]

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to initialize stock ledgers: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to initialize stock",
        )


@router.get("/alerts/active", response_model=ActiveAlertsResponse)
async def get_active_alerts(
    blood_type: Optional[BloodType] = Query(None, description="Only alerts for this type"),
    db: AsyncSession = Depends(get_db),
):
    try:
        rows = await StockLedgerService(db).list_active_alerts(
            blood_type.value if blood_type else None
        )
        alerts = [
            ActiveAlertResponse(
                **StockAlertResponse.model_validate(alert).model_dump(),
                current_stock=available,
            )
            for alert, available in rows
        ]
        return ActiveAlertsResponse(alerts=alerts, total_active_alerts=len(alerts))

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to load active alerts: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load alerts",
        )


@router.post("/alerts/{alert_id}/acknowledge", response_model=StockAlertResponse)
async def acknowledge_alert(
    alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    try:
        alert = await StockLedgerService(db).acknowledge_alert(alert_id, actor_id)
        return StockAlertResponse.model_validate(alert)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to acknowledge alert {alert_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to acknowledge alert",
        )


@router.get("/{blood_type}", response_model=BloodStockDetailResponse)
async def get_stock(blood_type: BloodType, db: AsyncSession = Depends(get_db)):
    """One ledger with its active alerts and latest movements."""
    try:
        service = StockLedgerService(db)
        ledger = await service.get_or_create_ledger(blood_type.value)
        movements = await service.get_recent_movements(ledger)

        return BloodStockDetailResponse(
            **BloodStockResponse.model_validate(ledger).model_dump(),
            alerts=[StockAlertResponse.model_validate(a) for a in ledger.active_alerts],
            recent_movements=[StockMovementResponse.model_validate(m) for m in movements],
        )

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to load stock for {blood_type.value}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load stock",
        )


@router.get(
    "/{blood_type}/history",
    response_model=PaginatedResponse[StockMovementResponse],
)
async def get_stock_history(
    blood_type: BloodType,
    pagination: PaginationParams = Depends(get_pagination_params),
    db: AsyncSession = Depends(get_db),
):
    start_time = time.time()
    try:
        history = await StockLedgerService(db).get_history(blood_type.value, pagination)

        duration = time.time() - start_time
        if duration > 1.0:
            log_performance_metric(
                operation="stock_history",
                duration_seconds=duration,
                additional_metrics={
                    "blood_type": blood_type.value,
                    "page": pagination.page,
                    "total_items": history.total_items,
                },
            )
        return history

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to load history for {blood_type.value}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load stock history",
        )


@router.put("/{blood_type}", response_model=BloodStockResponse)
async def update_stock(
    blood_type: BloodType,
    update_data: StockUpdate,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    """Set the available count and/or the alert thresholds."""
    try:
        ledger = await StockLedgerService(db).update_stock(
            blood_type.value,
            available_units=update_data.available_units,
            minimum_threshold=update_data.minimum_threshold,
            critical_threshold=update_data.critical_threshold,
            actor_id=actor_id,
            note=update_data.notes,
        )
        return BloodStockResponse.model_validate(ledger)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to update stock for {blood_type.value}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update stock",
        )


@router.post("/{blood_type}/remove-expired", response_model=BloodStockResponse)
async def remove_expired_units(
    blood_type: BloodType,
    removal: ExpiredUnitsRemoval,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    try:
        ledger = await StockLedgerService(db).expire(
            blood_type.value, removal.quantity, actor_id=actor_id, note=removal.reason
        )
        return BloodStockResponse.model_validate(ledger)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(
            f"Failed to remove expired units for {blood_type.value}: {e}", exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to remove expired units",
        )
