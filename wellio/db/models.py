from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()


class Coach(Base):
    __tablename__ = "coaches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    ai_config: Mapped["CoachAIConfig"] = relationship(
        "CoachAIConfig", back_populates="coach", uselist=False, cascade="all, delete-orphan"
    )
    clients: Mapped[list["Client"]] = relationship("Client", back_populates="coach")


class CoachAIConfig(Base):
    __tablename__ = "coach_ai_configs"
    __table_args__ = (UniqueConstraint("coach_id", name="uq_coach_ai_configs_coach_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    coach_id: Mapped[int] = mapped_column(ForeignKey("coaches.id"), nullable=False, index=True)

    ai_provider: Mapped[str] = mapped_column(String(32), nullable=False)
    ai_model: Mapped[str] = mapped_column(String(128), nullable=False)
    ai_vision_model: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    encrypted_api_key: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    coach: Mapped[Coach] = relationship("Coach", back_populates="ai_config")


class ModelUsageStat(Base):
    __tablename__ = "model_usage_stats"
    __table_args__ = (
        UniqueConstraint("coach_id", "provider", "model", name="uq_model_usage_coach_provider_model"),
        Index("ix_model_usage_coach_last_used", "coach_id", "last_used_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    coach_id: Mapped[int] = mapped_column(ForeignKey("coaches.id"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prompt_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class Client(Base):
    __tablename__ = "clients"
    __table_args__ = (Index("ix_clients_coach_status", "coach_id", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    coach_id: Mapped[Optional[int]] = mapped_column(ForeignKey("coaches.id"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")

    sex: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    weight_kg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    height_cm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    activity_level: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    goal_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    goal_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    target_weight_kg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    progress_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    goal_progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    weekly_progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    activity_progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    progress_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    coach: Mapped[Optional[Coach]] = relationship("Coach", back_populates="clients")
    goals: Mapped[list["Goal"]] = relationship("Goal", back_populates="client")
    smart_logs: Mapped[list["SmartLog"]] = relationship("SmartLog", back_populates="client")
    progress_events: Mapped[list["ProgressEvent"]] = relationship("ProgressEvent", back_populates="client")
    engagement_triggers: Mapped[list["EngagementTrigger"]] = relationship(
        "EngagementTrigger", back_populates="client"
    )


class Goal(Base):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    goal_type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    scope: Mapped[str] = mapped_column(String(32), nullable=False, default="long_term")
    baseline_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    target_value: Mapped[float] = mapped_column(Float, nullable=False)
    current_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    unit: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    deadline: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    week_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    client: Mapped[Client] = relationship("Client", back_populates="goals")


class SmartLog(Base):
    __tablename__ = "smart_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    author_type: Mapped[str] = mapped_column(String(16), nullable=False)
    raw_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    media_urls_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    local_date: Mapped[date] = mapped_column(Date, nullable=False)
    processing_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    oracle_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    client: Mapped[Client] = relationship("Client", back_populates="smart_logs")
    events: Mapped[list["ProgressEvent"]] = relationship(
        "ProgressEvent", back_populates="smart_log", order_by="ProgressEvent.id"
    )


class ProgressEvent(Base):
    __tablename__ = "progress_events"
    __table_args__ = (
        Index("ix_progress_events_client_occurred", "client_id", "occurred_at"),
        Index("ix_progress_events_smart_log_version", "smart_log_id", "version"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    smart_log_id: Mapped[Optional[int]] = mapped_column(ForeignKey("smart_logs.id"), nullable=True)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    data_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    superseded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    date_for_metric: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    client: Mapped[Client] = relationship("Client", back_populates="progress_events")
    smart_log: Mapped[Optional[SmartLog]] = relationship("SmartLog", back_populates="events")


class EngagementTrigger(Base):
    __tablename__ = "engagement_triggers"
    __table_args__ = (Index("ix_engagement_triggers_client_type", "client_id", "type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    coach_id: Mapped[Optional[int]] = mapped_column(ForeignKey("coaches.id"), nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str] = mapped_column(String(512), nullable=False)
    recommended_action: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    client: Mapped[Client] = relationship("Client", back_populates="engagement_triggers")
