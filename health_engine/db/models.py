"""SQLAlchemy database models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Supplier(Base):
    """Supplier registry row, maintained by the scraper coordinator."""

    __tablename__ = "suppliers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    allow_price_display: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Scraper state: active, cooldown, phone_only
    scrape_status: Mapped[str] = mapped_column(String(32), default="active", nullable=False)
    consecutive_scrape_failures: Mapped[Optional[int]] = mapped_column(
        Integer, default=0, nullable=True
    )
    scrape_failure_dates: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    last_scrape_failure_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    postal_codes_served: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)

    # Relationships
    prices: Mapped[list["SupplierPrice"]] = relationship(
        "SupplierPrice", back_populates="supplier"
    )


class SupplierPrice(Base):
    """Scraped or supplier-submitted price observation."""

    __tablename__ = "supplier_prices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    supplier_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("suppliers.id"), nullable=False
    )
    price_per_gallon: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    scraped_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    source_type: Mapped[str] = mapped_column(String(32), default="scraped", nullable=False)

    # Relationships
    supplier: Mapped["Supplier"] = relationship("Supplier", back_populates="prices")

    __table_args__ = (
        Index("ix_supplier_prices_supplier_scraped", "supplier_id", "scraped_at"),
    )


class SupplierClick(Base):
    """User engagement with a supplier listing (call or website click)."""

    __tablename__ = "supplier_clicks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    supplier_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("suppliers.id"), nullable=False
    )
    action_type: Mapped[str] = mapped_column(String(16), nullable=False)  # call, website
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )


class ApiActivity(Base):
    """One row per lookup request served by the web tier."""

    __tablename__ = "api_activity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[str] = mapped_column(String(8), default="GET", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )


class UserLocation(Base):
    """Search area seen by the location resolver."""

    __tablename__ = "user_locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    zip_code: Mapped[str] = mapped_column(String(10), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )
    request_count: Mapped[Optional[int]] = mapped_column(Integer, default=1, nullable=True)
    coverage_quality: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)


class CommunityDelivery(Base):
    """Community-submitted fuel delivery report."""

    __tablename__ = "community_deliveries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    fuel_type: Mapped[str] = mapped_column(String(32), default="heating_oil", nullable=False)
    validation_status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )


class WeatherHistory(Base):
    """Daily mean temperature (Fahrenheit)."""

    __tablename__ = "weather_history"

    day: Mapped[date] = mapped_column("date", Date, primary_key=True)
    region: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    temp_avg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)


class DailyPlatformMetrics(Base):
    """Nightly platform metrics snapshot, one row per calendar day."""

    __tablename__ = "daily_platform_metrics"

    day: Mapped[date] = mapped_column(Date, primary_key=True)
    computed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Search denominators (7d windows)
    search_zip_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    search_zips: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Supply
    pipeline_suppliers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Utilization (soft=click, hard=call)
    suppliers_clicked_7d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    suppliers_clicked_30d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    suppliers_called_7d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    suppliers_called_30d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Match rate
    zip_days_with_click_7d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    zip_days_with_call_7d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    zips_with_call_7d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Engagement totals
    calls_7d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    website_clicks_7d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Deliveries
    deliveries_7d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deliveries_30d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deliveries_oil_30d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deliveries_propane_30d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deliveries_propane_prev30d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Ranked tables
    demand_density_top25: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    community_top_zips_30d: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
