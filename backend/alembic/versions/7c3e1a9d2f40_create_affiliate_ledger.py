"""create affiliate ledger tables

Revision ID: 7c3e1a9d2f40
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "7c3e1a9d2f40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSON_TYPE = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "affiliates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False, server_default="10"),
        sa.Column("payout_method", sa.String(), nullable=False, server_default="paypal"),
        sa.Column("payout_destination", sa.String(), nullable=True),
        sa.Column("total_earnings", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_referrals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_visits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("balance_version", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("code", name="uq_affiliates_code"),
    )
    op.create_index(op.f("ix_affiliates_id"), "affiliates", ["id"], unique=False)
    op.create_index(op.f("ix_affiliates_user_id"), "affiliates", ["user_id"], unique=False)
    op.create_index("ix_affiliates_status", "affiliates", ["status"], unique=False)
    op.create_index("ix_affiliates_email", "affiliates", ["email"], unique=False)

    op.create_table(
        "affiliate_links",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "affiliate_id",
            sa.Integer(),
            sa.ForeignKey("affiliates.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("tag", sa.String(), nullable=True),
        sa.Column("code", sa.String(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("code", name="uq_affiliate_links_code"),
    )
    op.create_index(op.f("ix_affiliate_links_id"), "affiliate_links", ["id"], unique=False)
    op.create_index("ix_affiliate_links_affiliate", "affiliate_links", ["affiliate_id"], unique=False)

    op.create_table(
        "affiliate_visits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "affiliate_id",
            sa.Integer(),
            sa.ForeignKey("affiliates.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "link_id",
            sa.Integer(),
            sa.ForeignKey("affiliate_links.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("page_url", sa.Text(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("device_type", sa.String(), nullable=True),
        sa.Column("browser", sa.String(), nullable=True),
        sa.Column("country", sa.String(), nullable=True),
        sa.Column("converted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_affiliate_visits_id"), "affiliate_visits", ["id"], unique=False)
    op.create_index(
        "ix_affiliate_visits_affiliate_created",
        "affiliate_visits",
        ["affiliate_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_affiliate_visits_affiliate_converted",
        "affiliate_visits",
        ["affiliate_id", "converted"],
        unique=False,
    )

    op.create_table(
        "affiliate_referrals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "affiliate_id",
            sa.Integer(),
            sa.ForeignKey("affiliates.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "visit_id",
            sa.Integer(),
            sa.ForeignKey("affiliate_visits.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("order_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="approved"),
        sa.Column("conversion_type", sa.String(), nullable=False, server_default="one_time"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("order_id", name="uq_affiliate_referrals_order"),
    )
    op.create_index(op.f("ix_affiliate_referrals_id"), "affiliate_referrals", ["id"], unique=False)
    op.create_index(
        "ix_affiliate_referrals_affiliate_status",
        "affiliate_referrals",
        ["affiliate_id", "status"],
        unique=False,
    )

    op.create_table(
        "affiliate_payouts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "affiliate_id",
            sa.Integer(),
            sa.ForeignKey("affiliates.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount_requested", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="requested"),
        sa.Column("payout_method", sa.String(), nullable=True),
        sa.Column("payout_destination", sa.String(), nullable=True),
        sa.Column("transaction_id", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("processing_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("failed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index(op.f("ix_affiliate_payouts_id"), "affiliate_payouts", ["id"], unique=False)
    op.create_index(
        "ix_affiliate_payouts_affiliate_status",
        "affiliate_payouts",
        ["affiliate_id", "status"],
        unique=False,
    )

    op.create_table(
        "affiliate_commissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "affiliate_id",
            sa.Integer(),
            sa.ForeignKey("affiliates.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "referral_id",
            sa.Integer(),
            sa.ForeignKey("affiliate_referrals.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("member_id", sa.String(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("type", sa.String(), nullable=False, server_default="one_time"),
        sa.Column("status", sa.String(), nullable=False, server_default="unpaid"),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column(
            "payout_id",
            sa.Integer(),
            sa.ForeignKey("affiliate_payouts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "split_from_id",
            sa.Integer(),
            sa.ForeignKey("affiliate_commissions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
        sa.UniqueConstraint("referral_id", name="uq_affiliate_commissions_referral"),
        sa.CheckConstraint("amount >= 0", name="ck_affiliate_commissions_amount_non_negative"),
    )
    op.create_index(op.f("ix_affiliate_commissions_id"), "affiliate_commissions", ["id"], unique=False)
    op.create_index(
        "ix_affiliate_commissions_affiliate_status",
        "affiliate_commissions",
        ["affiliate_id", "status"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_user_id", sa.String(), nullable=True),
        sa.Column("actor_email", sa.String(), nullable=True),
        sa.Column("actor_role", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("context", JSON_TYPE, nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_audit_logs_id"), "audit_logs", ["id"], unique=False)
    op.create_index("ix_audit_action_time", "audit_logs", ["action", "timestamp"], unique=False)
    op.create_index("ix_audit_actor_time", "audit_logs", ["actor_user_id", "timestamp"], unique=False)

    op.create_table(
        "system_settings",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("value", JSON_TYPE, nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "email_queue",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("to_email", sa.String(), nullable=False),
        sa.Column("template_key", sa.String(), nullable=False),
        sa.Column("dedupe_key", sa.String(), nullable=False),
        sa.Column("trigger_event", sa.String(), nullable=True),
        sa.Column("subject", sa.String(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="queued"),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("metadata_json", JSON_TYPE, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("dedupe_key", name="uq_email_queue_dedupe"),
    )
    op.create_index(op.f("ix_email_queue_id"), "email_queue", ["id"], unique=False)
    op.create_index(
        "ix_email_queue_status_created",
        "email_queue",
        ["status", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_email_queue_status_created", table_name="email_queue")
    op.drop_index(op.f("ix_email_queue_id"), table_name="email_queue")
    op.drop_table("email_queue")
    op.drop_table("system_settings")
    op.drop_index("ix_audit_actor_time", table_name="audit_logs")
    op.drop_index("ix_audit_action_time", table_name="audit_logs")
    op.drop_index(op.f("ix_audit_logs_id"), table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_affiliate_commissions_affiliate_status", table_name="affiliate_commissions")
    op.drop_index(op.f("ix_affiliate_commissions_id"), table_name="affiliate_commissions")
    op.drop_table("affiliate_commissions")
    op.drop_index("ix_affiliate_payouts_affiliate_status", table_name="affiliate_payouts")
    op.drop_index(op.f("ix_affiliate_payouts_id"), table_name="affiliate_payouts")
    op.drop_table("affiliate_payouts")
    op.drop_index("ix_affiliate_referrals_affiliate_status", table_name="affiliate_referrals")
    op.drop_index(op.f("ix_affiliate_referrals_id"), table_name="affiliate_referrals")
    op.drop_table("affiliate_referrals")
    op.drop_index("ix_affiliate_visits_affiliate_converted", table_name="affiliate_visits")
    op.drop_index("ix_affiliate_visits_affiliate_created", table_name="affiliate_visits")
    op.drop_index(op.f("ix_affiliate_visits_id"), table_name="affiliate_visits")
    op.drop_table("affiliate_visits")
    op.drop_index("ix_affiliate_links_affiliate", table_name="affiliate_links")
    op.drop_index(op.f("ix_affiliate_links_id"), table_name="affiliate_links")
    op.drop_table("affiliate_links")
    op.drop_index("ix_affiliates_email", table_name="affiliates")
    op.drop_index("ix_affiliates_status", table_name="affiliates")
    op.drop_index(op.f("ix_affiliates_user_id"), table_name="affiliates")
    op.drop_index(op.f("ix_affiliates_id"), table_name="affiliates")
    op.drop_table("affiliates")
