from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Boolean, ForeignKey, Index,
    DateTime, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from db.database import Base


LOG_STATUSES = ("pending", "taken", "missed", "skipped")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(Text, unique=True, nullable=False)
    username_normalized = Column(Text, unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    display_name = Column(Text, nullable=False)
    token_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    settings = relationship("UserSettings", back_populates="user", uselist=False, cascade="all, delete-orphan")
    medications = relationship("Medication", back_populates="user", cascade="all, delete-orphan")
    medication_logs = relationship("MedicationLog", back_populates="user")
    achievements = relationship("Achievement", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
    profile = relationship("Profile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    journal_entries = relationship("HealthJournalEntry", back_populates="user", cascade="all, delete-orphan")


class UserSettings(Base):
    __tablename__ = "user_settings"
    __table_args__ = (UniqueConstraint("user_id", name="uq_user_settings_user"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    sound_enabled = Column(Boolean, nullable=False, default=True)
    ringtone = Column(Text, nullable=False, default="default")
    snooze_minutes = Column(Integer, nullable=False, default=15)
    dark_mode = Column(Boolean, nullable=False, default=False)
    timezone = Column(Text)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="settings")


class Medication(Base):
    __tablename__ = "medications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(Text, nullable=False)
    dosage = Column(Text, nullable=False, default="")
    frequency = Column(Text, nullable=False, default="once_daily")  # once_daily | twice_daily | ... | as_needed | custom
    start_date = Column(Text)  # YYYY-MM-DD
    end_date = Column(Text)  # YYYY-MM-DD
    reminder_times = Column(Text)  # JSON array of "HH:MM"
    photo_url = Column(Text)
    notes = Column(Text)
    remaining_quantity = Column(Integer)
    refill_reminder_threshold = Column(Integer, nullable=False, default=7)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="medications")
    logs = relationship("MedicationLog", back_populates="medication")


class MedicationLog(Base):
    __tablename__ = "medication_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    medication_id = Column(Integer, ForeignKey("medications.id"), nullable=False)
    scheduled_time = Column(DateTime, nullable=False)
    taken_time = Column(DateTime)
    status = Column(Text, nullable=False, default="pending")  # pending | taken | missed | skipped
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="medication_logs")
    medication = relationship("Medication", back_populates="logs")


class Achievement(Base):
    __tablename__ = "achievements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    badge_type = Column(Text, nullable=False)  # first_dose | week_streak | month_streak | perfect_week | ...
    earned_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    streak_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="achievements")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    category = Column(Text, nullable=False, default="info")  # info | reminder | warning | system
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(Text)  # JSON object
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    read_at = Column(DateTime)

    user = relationship("User", back_populates="notifications")


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (UniqueConstraint("user_id", name="uq_profiles_user"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    full_name = Column(Text)
    email = Column(Text)
    phone = Column(Text)
    mobile = Column(Text)
    date_of_birth = Column(Text)  # YYYY-MM-DD
    medical_history = Column(Text)
    allergies = Column(Text)
    emergency_contact_name = Column(Text)
    emergency_contact_phone = Column(Text)
    healthcare_provider = Column(Text)
    photo_url = Column(Text)
    onboarding_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="profile")


class HealthJournalEntry(Base):
    __tablename__ = "health_journal"
    __table_args__ = (UniqueConstraint("user_id", "entry_date", name="uq_health_journal_user_date"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    entry_date = Column(Text, nullable=False)  # YYYY-MM-DD
    symptoms = Column(Text)
    mood = Column(Text)  # great | good | okay | bad | terrible
    wellness_score = Column(Integer)  # 1-10
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="journal_entries")


Index("idx_medication_logs_user_scheduled", MedicationLog.user_id, MedicationLog.scheduled_time)
Index("idx_medication_logs_medication", MedicationLog.medication_id)
Index("idx_medications_user_active", Medication.user_id, Medication.active)
Index("idx_achievements_user_earned", Achievement.user_id, Achievement.earned_date)
Index("idx_notifications_user_date", Notification.user_id, Notification.created_at)
Index("idx_notifications_user_read", Notification.user_id, Notification.is_read)
