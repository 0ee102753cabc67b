from sqladmin import ModelView

from app.models.stock_model import BloodStock, StockAlert, StockMovement


class BloodStockAdmin(ModelView, model=BloodStock):
    """Ledger rows change only through the service layer; the back-office reads them."""

    column_list = [
        BloodStock.blood_type,
        BloodStock.available_units,
        BloodStock.total_units,
        BloodStock.used_units,
        BloodStock.expired_units,
        BloodStock.minimum_threshold,
        BloodStock.critical_threshold,
        "status",
        BloodStock.updated_at,
    ]

    column_labels = {"status": "Status"}

    column_formatters = {
        "status": lambda m, c: m.status.value,
    }

    column_sortable_list = [BloodStock.blood_type, BloodStock.available_units]

    can_create = False
    can_edit = False
    can_delete = False
    can_view_details = True

    name = "Blood Stock"
    name_plural = "Blood Stock"
    icon = "fa-solid fa-droplet"


class StockMovementAdmin(ModelView, model=StockMovement):
    column_list = [
        StockMovement.blood_type,
        StockMovement.sequence,
        StockMovement.action,
        StockMovement.delta,
        StockMovement.balance_before,
        StockMovement.balance_after,
        StockMovement.reference_kind,
        StockMovement.reference_id,
        StockMovement.actor_id,
        StockMovement.created_at,
    ]

    column_searchable_list = [StockMovement.blood_type]
    column_default_sort = [(StockMovement.created_at, True)]

    can_create = False
    can_edit = False
    can_delete = False
    can_view_details = True

    name = "Stock Movement"
    name_plural = "Stock Movements"
    icon = "fa-solid fa-clock-rotate-left"


class StockAlertAdmin(ModelView, model=StockAlert):
    column_list = [
        StockAlert.blood_type,
        StockAlert.kind,
        StockAlert.message,
        StockAlert.is_active,
        StockAlert.created_at,
        StockAlert.acknowledged_at,
    ]

    column_default_sort = [(StockAlert.created_at, True)]

    can_create = False
    can_edit = False
    can_delete = False

    name = "Stock Alert"
    name_plural = "Stock Alerts"
    icon = "fa-solid fa-triangle-exclamation"
