"""Initial stock ledger, request and donation tables

Revision ID: 0001_initial_ledger_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

from app.db.base import UUID


# revision identifiers, used by Alembic.
revision = "0001_initial_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


def _enum(*values, name):
    return sa.Enum(*values, name=name, native_enum=False)


def upgrade():
    op.create_table(
        "blood_stock",
        sa.Column("id", UUID(), primary_key=True, nullable=False),
        sa.Column("blood_type", sa.String(3), nullable=False, unique=True),
        sa.Column("total_units", sa.Integer, nullable=False, server_default="0"),
        sa.Column("available_units", sa.Integer, nullable=False, server_default="0"),
        sa.Column("reserved_units", sa.Integer, nullable=False, server_default="0"),
        sa.Column("used_units", sa.Integer, nullable=False, server_default="0"),
        sa.Column("expired_units", sa.Integer, nullable=False, server_default="0"),
        sa.Column("minimum_threshold", sa.Integer, nullable=False, server_default="10"),
        sa.Column("critical_threshold", sa.Integer, nullable=False, server_default="5"),
        sa.Column("movement_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_donation_at", sa.DateTime, nullable=True),
        sa.Column("last_request_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
    )

    op.create_table(
        "stock_movements",
        sa.Column("id", UUID(), primary_key=True, nullable=False),
        sa.Column(
            "stock_id",
            UUID(),
            sa.ForeignKey("blood_stock.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("blood_type", sa.String(3), nullable=False),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column(
            "action",
            _enum("credit", "debit", "expire", "adjust", name="movement_action"),
            nullable=False,
        ),
        sa.Column("delta", sa.Integer, nullable=False),
        sa.Column("balance_before", sa.Integer, nullable=False),
        sa.Column("balance_after", sa.Integer, nullable=False),
        sa.Column("reference_id", UUID(), nullable=True),
        sa.Column(
            "reference_kind",
            _enum("donation", "blood_request", "manual", name="movement_reference_kind"),
            nullable=True,
        ),
        sa.Column("actor_id", UUID(), nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index(
        "idx_movement_stock_sequence", "stock_movements", ["stock_id", "sequence"], unique=True
    )
    op.create_index("idx_movement_created", "stock_movements", ["created_at"])
    op.create_index(
        "idx_movement_reference", "stock_movements", ["reference_kind", "reference_id"]
    )

    op.create_table(
        "stock_alerts",
        sa.Column("id", UUID(), primary_key=True, nullable=False),
        sa.Column(
            "stock_id",
            UUID(),
            sa.ForeignKey("blood_stock.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("blood_type", sa.String(3), nullable=False),
        sa.Column("kind", _enum("low", "critical", name="alert_kind"), nullable=False),
        sa.Column("message", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("acknowledged_by_id", UUID(), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime, nullable=True),
    )
    op.create_index("idx_alert_stock_active", "stock_alerts", ["stock_id", "is_active"])
    op.create_index("idx_alert_active_created", "stock_alerts", ["is_active", "created_at"])

    screening = ("negative", "positive", "pending")
    op.create_table(
        "donations",
        sa.Column("id", UUID(), primary_key=True, nullable=False),
        sa.Column("donor_id", UUID(), nullable=False),
        sa.Column("blood_type", sa.String(3), nullable=False),
        sa.Column("quantity_ml", sa.Integer, nullable=False, server_default="450"),
        sa.Column("donation_date", sa.DateTime, nullable=False),
        sa.Column("center", sa.String(200), nullable=False),
        sa.Column(
            "status",
            _enum(
                "pending", "approved", "rejected", "completed", "expired",
                name="donation_status",
            ),
            nullable=False,
        ),
        sa.Column("hemoglobin", sa.Float, nullable=True),
        sa.Column("hiv", _enum(*screening, name="screening_result"), nullable=False),
        sa.Column("hepatitis_b", _enum(*screening, name="screening_result"), nullable=False),
        sa.Column("hepatitis_c", _enum(*screening, name="screening_result"), nullable=False),
        sa.Column("syphilis", _enum(*screening, name="screening_result"), nullable=False),
        sa.Column("expiry_date", sa.DateTime, nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("approved_by_id", UUID(), nullable=True),
        sa.Column("approved_at", sa.DateTime, nullable=True),
        sa.Column("rejection_reason", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("idx_donation_donor_date", "donations", ["donor_id", "donation_date"])
    op.create_index("idx_donation_type_status", "donations", ["blood_type", "status"])
    op.create_index("idx_donation_status_expiry", "donations", ["status", "expiry_date"])

    op.create_table(
        "blood_requests",
        sa.Column("id", UUID(), primary_key=True, nullable=False),
        sa.Column("requester_id", UUID(), nullable=False),
        sa.Column("blood_type", sa.String(3), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column(
            "urgency",
            _enum("scheduled", "normal", "urgent", "critical", name="urgency"),
            nullable=False,
        ),
        sa.Column("required_by", sa.DateTime, nullable=False),
        sa.Column(
            "status",
            _enum(
                "pending", "approved", "partially_fulfilled", "fulfilled", "rejected", "expired",
                name="request_status",
            ),
            nullable=False,
        ),
        sa.Column("priority", sa.Integer, nullable=False, server_default="1"),
        sa.Column("units_provided", sa.Integer, nullable=False, server_default="0"),
        sa.Column("fulfilled_at", sa.DateTime, nullable=True),
        sa.Column("patient_name", sa.String(200), nullable=False),
        sa.Column("patient_age", sa.Integer, nullable=False),
        sa.Column(
            "patient_gender", _enum("male", "female", "other", name="gender"), nullable=False
        ),
        sa.Column("condition", sa.String(200), nullable=False),
        sa.Column("hospital_name", sa.String(200), nullable=False),
        sa.Column("hospital_city", sa.String(200), nullable=False),
        sa.Column("hospital_contact", sa.String(200), nullable=False),
        sa.Column("doctor_name", sa.String(200), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("admin_notes", sa.Text, nullable=True),
        sa.Column("approved_by_id", UUID(), nullable=True),
        sa.Column("approved_at", sa.DateTime, nullable=True),
        sa.Column("rejected_by_id", UUID(), nullable=True),
        sa.Column("rejection_reason", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
    )
    op.create_index(
        "idx_request_requester_created", "blood_requests", ["requester_id", "created_at"]
    )
    op.create_index(
        "idx_request_type_status_urgency", "blood_requests", ["blood_type", "status", "urgency"]
    )
    op.create_index(
        "idx_request_status_required_by", "blood_requests", ["status", "required_by"]
    )
    op.create_index("idx_request_priority_created", "blood_requests", ["priority", "created_at"])

    op.create_table(
        "fulfillment_entries",
        sa.Column("id", UUID(), primary_key=True, nullable=False),
        sa.Column(
            "request_id",
            UUID(),
            sa.ForeignKey("blood_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "donation_id",
            UUID(),
            sa.ForeignKey("donations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("units", sa.Integer, nullable=False),
        sa.Column("provided_at", sa.DateTime, nullable=False),
    )
    op.create_index("idx_fulfillment_request", "fulfillment_entries", ["request_id"])
    op.create_index("idx_fulfillment_donation", "fulfillment_entries", ["donation_id"])


def downgrade():
    op.drop_table("fulfillment_entries")
    op.drop_table("blood_requests")
    op.drop_table("donations")
    op.drop_table("stock_alerts")
    op.drop_table("stock_movements")
    op.drop_table("blood_stock")
