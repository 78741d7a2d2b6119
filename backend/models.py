"""
SQLAlchemy ORM models for the client portal performance service.

These tables are written by the rest of the portal (billing sync, ingestion,
alert composer) and read by the scoring engine:
- Client: the agency's customer, with cached score/stage fields
- Product / Subscription / SubscriptionItem / ClientProduct: what the client
  buys, used to infer the plan type and the MRR
- MetricSnapshot: one metric value over a bounded period (immutable)
- ClientCommunication: messages sent to the client, including result alerts
- ActivityLog: positive outcomes logged by the team
- ClientAlert: alerts composed in the admin UI (draft/published/dismissed)
- ScoreHistory: append-only score trail for sparklines

Only the cached score fields on Client and the ScoreHistory table are written
by the engine.
"""

from sqlalchemy import Column, Integer, String, Float, Date, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from .db import Base


class Client(Base):
    """Agency client with tenure anchor, cached spend and cached performance fields."""
    __tablename__ = "clients"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")  # active | prospect | paused | churned
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    start_date = Column(Date, nullable=True)
    monthly_spend = Column(Float, nullable=True)

    performance_score = Column(Integer, nullable=True)
    score_updated_at = Column(DateTime, nullable=True)
    growth_stage = Column(String, nullable=True)
    stage_updated_at = Column(DateTime, nullable=True)

    subscriptions = relationship("Subscription", back_populates="client", cascade="all, delete-orphan")
    client_products = relationship("ClientProduct", back_populates="client", cascade="all, delete-orphan")
    snapshots = relationship("MetricSnapshot", back_populates="client", cascade="all, delete-orphan")
    communications = relationship("ClientCommunication", back_populates="client", cascade="all, delete-orphan")
    activities = relationship("ActivityLog", back_populates="client", cascade="all, delete-orphan")
    alerts = relationship("ClientAlert", back_populates="client", cascade="all, delete-orphan")
    score_history = relationship("ScoreHistory", back_populates="client", cascade="all, delete-orphan")


class Product(Base):
    """Catalog product; `category` drives plan inference, `monthly_price` is in major units."""
    __tablename__ = "products"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=True)  # root | growth | ai | content | ...
    monthly_price = Column(Float, nullable=True)


class Subscription(Base):
    """Billing subscription mirrored from the payment provider."""
    __tablename__ = "subscriptions"
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), index=True, nullable=False)
    status = Column(String, nullable=False, default="active")  # active | canceled | past_due

    client = relationship("Client", back_populates="subscriptions")
    items = relationship("SubscriptionItem", back_populates="subscription", cascade="all, delete-orphan")


class SubscriptionItem(Base):
    """Line item of a subscription; `unit_amount` is stored in minor units (cents)."""
    __tablename__ = "subscription_items"
    id = Column(Integer, primary_key=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    quantity = Column(Integer, nullable=True, default=1)
    unit_amount = Column(Integer, nullable=True)

    subscription = relationship("Subscription", back_populates="items")
    product = relationship("Product")


class ClientProduct(Base):
    """Product attached to a client outside of a billing subscription."""
    __tablename__ = "client_products"
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)

    client = relationship("Client", back_populates="client_products")
    product = relationship("Product")


class MetricSnapshot(Base):
    """One observation of one metric for one client over [period_start, period_end]."""
    __tablename__ = "metric_snapshots"
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), index=True, nullable=False)
    metric_type = Column(String, nullable=False, index=True)  # keyword_avg_position | visitors | leads | ai_visibility | conversions
    value = Column(Float, nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    client = relationship("Client", back_populates="snapshots")


class ClientCommunication(Base):
    """Message sent to a client; result alerts carry their alert type in `meta["type"]`."""
    __tablename__ = "client_communications"
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), index=True, nullable=False)
    comm_type = Column(String, nullable=False)  # result_alert | email | note
    highlight_type = Column(String, nullable=True)  # success | info | warning
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    client = relationship("Client", back_populates="communications")


class ActivityLog(Base):
    """Team activity entry; some types count as improvement events."""
    __tablename__ = "activity_log"
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), index=True, nullable=False)
    activity_type = Column(String, nullable=False)
    description = Column(String, nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    client = relationship("Client", back_populates="activities")


class ClientAlert(Base):
    """Alert composed in the admin UI."""
    __tablename__ = "client_alerts"
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), index=True, nullable=False)
    alert_type = Column(String, nullable=False)  # performance_focus | general_update | milestone | intervention
    message = Column(String, nullable=True)
    status = Column(String, nullable=False, default="draft")  # draft | published | dismissed
    published_at = Column(DateTime, nullable=True)
    dismissed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    client = relationship("Client", back_populates="alerts")


class ScoreHistory(Base):
    """Append-only record of a computed score."""
    __tablename__ = "score_history"
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), index=True, nullable=False)
    score = Column(Integer, nullable=False)
    growth_stage = Column(String, nullable=True)
    recorded_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    client = relationship("Client", back_populates="score_history")
