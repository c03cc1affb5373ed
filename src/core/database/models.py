"""SQLAlchemy models for database schema."""

import logging
from datetime import date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column, relationship
from sqlalchemy.sql import func

from src.core.database.json_type import JSONType

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models using SQLAlchemy 2.0 declarative style."""

    pass


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    fb_ad_account_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    reports = relationship("MonthlyReport", back_populates="client", cascade="all, delete-orphan")
    analytics_snapshot = relationship(
        "AnalyticsCacheEntry", back_populates="client", uselist=False, cascade="all, delete-orphan"
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self):
        return f"<Client {self.id} {self.name!r} ({self.status})>"


class MonthlyReport(Base):
    """Consolidated collection payload for one client and month."""

    __tablename__ = "monthly_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String(50), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    month_year: Mapped[str] = mapped_column(String(7), nullable=False)
    report_data: Mapped[dict] = mapped_column(JSONType, nullable=False)
    scraped_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    client = relationship("Client", back_populates="reports")

    __table_args__ = (
        UniqueConstraint("client_id", "month_year", name="uq_monthly_reports_client_month"),
        Index("idx_monthly_reports_client", "client_id"),
    )


class InsightMetricsMixin:
    """Columns shared by every per-dimension insights table.

    Flat metrics are nullable: NULL means the platform reported nothing,
    which is different from a reported zero.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    month_year: Mapped[str] = mapped_column(String(7), nullable=False)

    @declared_attr
    def client_id(cls) -> Mapped[str]:
        return mapped_column(String(50), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)

    # Delivery
    impressions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reach: Mapped[int | None] = mapped_column(Integer, nullable=True)
    frequency: Mapped[float | None] = mapped_column(Float, nullable=True)
    clicks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    unique_clicks: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Cost and rates
    cpm: Mapped[float | None] = mapped_column(Float, nullable=True)
    cpc: Mapped[float | None] = mapped_column(Float, nullable=True)
    cpp: Mapped[float | None] = mapped_column(Float, nullable=True)
    ctr: Mapped[float | None] = mapped_column(Float, nullable=True)
    unique_ctr: Mapped[float | None] = mapped_column(Float, nullable=True)
    cost_per_unique_click: Mapped[float | None] = mapped_column(Float, nullable=True)
    spend: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Link engagement
    inline_link_clicks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    inline_link_click_ctr: Mapped[float | None] = mapped_column(Float, nullable=True)
    unique_inline_link_clicks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    unique_inline_link_click_ctr: Mapped[float | None] = mapped_column(Float, nullable=True)
    cost_per_unique_inline_link_click: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Derived conversion totals
    conversions: Mapped[float | None] = mapped_column(Float, nullable=True)
    conversion_value: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Raw structured arrays as returned by the platform
    actions: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    action_values: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    conversions_raw: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    conversion_values: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    cost_per_conversion: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    cost_per_action_type: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    purchase_roas: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    website_purchase_roas: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    mobile_app_purchase_roas: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    outbound_clicks: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    outbound_clicks_ctr: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    unique_outbound_clicks: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    unique_outbound_clicks_ctr: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    cost_per_unique_outbound_click: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    date_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_stop: Mapped[date | None] = mapped_column(Date, nullable=True)
    scraped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CampaignInsight(InsightMetricsMixin, Base):
    __tablename__ = "fb_campaigns"

    campaign_id: Mapped[str] = mapped_column(String(100), nullable=False)
    campaign_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    adset_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    adset_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    objective: Mapped[str | None] = mapped_column(String(100), nullable=True)
    optimization_goal: Mapped[str | None] = mapped_column(String(100), nullable=True)
    buying_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    attribution_setting: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("client_id", "month_year", "campaign_id", name="uq_fb_campaigns_key"),
        Index("idx_fb_campaigns_client_month", "client_id", "month_year"),
    )


class DemographicInsight(InsightMetricsMixin, Base):
    __tablename__ = "fb_demographics"

    age: Mapped[str] = mapped_column(String(20), nullable=False)
    gender: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint("client_id", "month_year", "age", "gender", name="uq_fb_demographics_key"),
        Index("idx_fb_demographics_client_month", "client_id", "month_year"),
    )


class RegionalInsight(InsightMetricsMixin, Base):
    __tablename__ = "fb_regional"

    region: Mapped[str] = mapped_column(String(200), nullable=False)
    account_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    account_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("client_id", "month_year", "region", name="uq_fb_regional_key"),
        Index("idx_fb_regional_client_month", "client_id", "month_year"),
    )


class DeviceInsight(InsightMetricsMixin, Base):
    __tablename__ = "fb_devices"

    device_platform: Mapped[str] = mapped_column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint("client_id", "month_year", "device_platform", name="uq_fb_devices_key"),
        Index("idx_fb_devices_client_month", "client_id", "month_year"),
    )


class PlatformInsight(InsightMetricsMixin, Base):
    __tablename__ = "fb_platforms"

    publisher_platform: Mapped[str] = mapped_column(String(50), nullable=False)
    platform_position: Mapped[str] = mapped_column(String(100), nullable=False, default="unknown")

    __table_args__ = (
        UniqueConstraint(
            "client_id", "month_year", "publisher_platform", "platform_position", name="uq_fb_platforms_key"
        ),
        Index("idx_fb_platforms_client_month", "client_id", "month_year"),
    )


class AdInsight(InsightMetricsMixin, Base):
    __tablename__ = "fb_ad_level"

    ad_id: Mapped[str] = mapped_column(String(100), nullable=False)
    ad_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    campaign_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    campaign_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    adset_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    adset_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    objective: Mapped[str | None] = mapped_column(String(100), nullable=True)
    optimization_goal: Mapped[str | None] = mapped_column(String(100), nullable=True)
    buying_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    attribution_setting: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("client_id", "month_year", "ad_id", name="uq_fb_ad_level_key"),
        Index("idx_fb_ad_level_client_month", "client_id", "month_year"),
    )


class AnalyticsCacheEntry(Base):
    """One precomputed analytics snapshot per client."""

    __tablename__ = "analytics_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("clients.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    month_year: Mapped[str | None] = mapped_column(String(7), nullable=True)
    analytics_data: Mapped[dict] = mapped_column(JSONType, nullable=False)
    data_source: Mapped[str] = mapped_column(String(50), nullable=False, default="separated_tables")
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    client = relationship("Client", back_populates="analytics_snapshot")
