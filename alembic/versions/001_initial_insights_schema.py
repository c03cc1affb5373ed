"""Initial insights schema

Revision ID: 001
Revises:
Create Date: 2026-10-01 12:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_ARRAY_COLUMNS = (
    "actions",
    "action_values",
    "conversions_raw",
    "conversion_values",
    "cost_per_conversion",
    "cost_per_action_type",
    "purchase_roas",
    "website_purchase_roas",
    "mobile_app_purchase_roas",
    "outbound_clicks",
    "outbound_clicks_ctr",
    "unique_outbound_clicks",
    "unique_outbound_clicks_ctr",
    "cost_per_unique_outbound_click",
)

INTEGER_COLUMNS = ("impressions", "reach", "clicks", "unique_clicks", "inline_link_clicks", "unique_inline_link_clicks")

FLOAT_COLUMNS = (
    "frequency",
    "cpm",
    "cpc",
    "cpp",
    "ctr",
    "unique_ctr",
    "cost_per_unique_click",
    "spend",
    "inline_link_click_ctr",
    "unique_inline_link_click_ctr",
    "cost_per_unique_inline_link_click",
    "conversions",
    "conversion_value",
)

CAMPAIGN_ATTRIBUTE_COLUMNS = (
    ("objective", sa.String(100)),
    ("optimization_goal", sa.String(100)),
    ("buying_type", sa.String(50)),
    ("attribution_setting", sa.String(100)),
)


def _metric_columns() -> list[sa.Column]:
    columns = [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("client_id", sa.String(50), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("month_year", sa.String(7), nullable=False),
    ]
    columns += [sa.Column(name, sa.Integer(), nullable=True) for name in INTEGER_COLUMNS]
    columns += [sa.Column(name, sa.Float(), nullable=True) for name in FLOAT_COLUMNS]
    columns += [sa.Column(name, JSONB(), nullable=True) for name in JSON_ARRAY_COLUMNS]
    columns += [
        sa.Column("date_start", sa.Date(), nullable=True),
        sa.Column("date_stop", sa.Date(), nullable=True),
        sa.Column("scraped_at", sa.DateTime(timezone=True), nullable=True),
    ]
    return columns


def _campaign_attribute_columns() -> list[sa.Column]:
    return [sa.Column(name, type_, nullable=True) for name, type_ in CAMPAIGN_ATTRIBUTE_COLUMNS]


def _create_dimension_table(name: str, key: list[str], columns: list[sa.Column]) -> None:
    op.create_table(
        name,
        *_metric_columns(),
        *columns,
        sa.UniqueConstraint("client_id", "month_year", *key, name=f"uq_{name}_key"),
    )
    op.create_index(f"idx_{name}_client_month", name, ["client_id", "month_year"])


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", sa.String(50), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("fb_ad_account_id", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "monthly_reports",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("client_id", sa.String(50), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("month_year", sa.String(7), nullable=False),
        sa.Column("report_data", JSONB(), nullable=False),
        sa.Column("scraped_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("client_id", "month_year", name="uq_monthly_reports_client_month"),
    )
    op.create_index("idx_monthly_reports_client", "monthly_reports", ["client_id"])

    _create_dimension_table(
        "fb_campaigns",
        ["campaign_id"],
        [
            sa.Column("campaign_id", sa.String(100), nullable=False),
            sa.Column("campaign_name", sa.Text(), nullable=True),
            sa.Column("adset_id", sa.String(100), nullable=True),
            sa.Column("adset_name", sa.Text(), nullable=True),
            *_campaign_attribute_columns(),
        ],
    )
    _create_dimension_table(
        "fb_demographics",
        ["age", "gender"],
        [sa.Column("age", sa.String(20), nullable=False), sa.Column("gender", sa.String(20), nullable=False)],
    )
    _create_dimension_table(
        "fb_regional",
        ["region"],
        [
            sa.Column("region", sa.String(200), nullable=False),
            sa.Column("account_id", sa.String(50), nullable=True),
            sa.Column("account_name", sa.Text(), nullable=True),
        ],
    )
    _create_dimension_table(
        "fb_devices",
        ["device_platform"],
        [sa.Column("device_platform", sa.String(50), nullable=False)],
    )
    _create_dimension_table(
        "fb_platforms",
        ["publisher_platform", "platform_position"],
        [
            sa.Column("publisher_platform", sa.String(50), nullable=False),
            sa.Column("platform_position", sa.String(100), nullable=False, server_default="unknown"),
        ],
    )
    _create_dimension_table(
        "fb_ad_level",
        ["ad_id"],
        [
            sa.Column("ad_id", sa.String(100), nullable=False),
            sa.Column("ad_name", sa.Text(), nullable=True),
            sa.Column("campaign_id", sa.String(100), nullable=True),
            sa.Column("campaign_name", sa.Text(), nullable=True),
            sa.Column("adset_id", sa.String(100), nullable=True),
            sa.Column("adset_name", sa.Text(), nullable=True),
            *_campaign_attribute_columns(),
        ],
    )

    op.create_table(
        "analytics_cache",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "client_id", sa.String(50), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, unique=True
        ),
        sa.Column("month_year", sa.String(7), nullable=True),
        sa.Column("analytics_data", JSONB(), nullable=False),
        sa.Column("data_source", sa.String(50), nullable=False, server_default="separated_tables"),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("analytics_cache")
    for name in ("fb_ad_level", "fb_platforms", "fb_devices", "fb_regional", "fb_demographics", "fb_campaigns"):
        op.drop_index(f"idx_{name}_client_month", table_name=name)
        op.drop_table(name)
    op.drop_index("idx_monthly_reports_client", table_name="monthly_reports")
    op.drop_table("monthly_reports")
    op.drop_table("clients")
