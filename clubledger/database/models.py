from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Boolean, Text, JSON,
    ForeignKey, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from datetime import datetime

Base = declarative_base()

class Account(Base):
    """
    Player account holding the current progression balances.

    Balances are a cache of the ledger: they are only ever changed together with
    a LedgerEntry in the same transaction. The version column makes concurrent
    read-modify-write cycles detectable (StaleDataError on the losing writer).
    """
    __tablename__ = 'accounts'

    id = Column(String(64), primary_key=True)
    first_name = Column(String(100), nullable=False, default='')
    last_name = Column(String(100), nullable=False, default='')

    # Subgroup memberships (list of subgroup ids)
    subgroup_ids = Column(JSON, nullable=False, default=list)

    # Progression balances
    points = Column(Integer, nullable=False, default=0)
    xp = Column(Integer, nullable=False, default=0)
    elo_rating = Column(Integer, nullable=False, default=0)

    # Foundational exercise tracking
    grundlagen_completed = Column(Integer, nullable=False, default=0)
    is_match_ready = Column(Boolean, nullable=False, default=False)

    # Metadata
    last_xp_update = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())

    # Optimistic concurrency counter
    version = Column(Integer, nullable=False, default=1)

    # Relationships
    ledger_entries = relationship(
        "LedgerEntry", back_populates="player",
        cascade="all, delete-orphan", foreign_keys="LedgerEntry.player_id"
    )
    streaks = relationship("StreakRecord", back_populates="player", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint('points >= 0', name='non_negative_points_check'),
        CheckConstraint('xp >= 0', name='non_negative_xp_check'),
        CheckConstraint('grundlagen_completed >= 0 AND grundlagen_completed <= 5',
                        name='grundlagen_range_check'),
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.id

    def is_in_subgroup(self, subgroup_id: str) -> bool:
        return subgroup_id in (self.subgroup_ids or [])

    def __repr__(self):
        return f"<Account(id='{self.id}', points={self.points}, xp={self.xp}, elo={self.elo_rating})>"

class LedgerEntry(Base):
    """
    Immutable, append-only history record of one applied balance change.

    Deltas are the actually applied (clamped) values, not the requested ones.
    """
    __tablename__ = 'ledger_entries'

    id = Column(Integer, primary_key=True)
    player_id = Column(String(64), ForeignKey('accounts.id'), nullable=False, index=True)

    points_delta = Column(Integer, nullable=False, default=0)
    xp_delta = Column(Integer, nullable=False, default=0)
    elo_delta = Column(Integer, nullable=False, default=0)  # Reserved for match results

    reason = Column(String(500), nullable=False)
    reason_type = Column(String(30), nullable=False)
    awarded_by = Column(String(200), nullable=False)

    # Partner split tagging
    is_partner = Column(Boolean, nullable=False, default=False)
    is_active_player = Column(Boolean, nullable=False, default=False)
    partner_id = Column(String(64), ForeignKey('accounts.id'), nullable=True)

    # Attendance context
    attendance_date = Column(Date, nullable=True)
    subgroup_id = Column(String(64), nullable=True)

    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    player = relationship("Account", back_populates="ledger_entries", foreign_keys=[player_id])
    partner = relationship("Account", foreign_keys=[partner_id])

    __table_args__ = (
        Index('idx_ledger_player_timestamp', 'player_id', 'timestamp'),
    )

    def __repr__(self):
        return (f"<LedgerEntry(player_id='{self.player_id}', points={self.points_delta}, "
                f"xp={self.xp_delta}, reason='{self.reason}')>")

class StreakRecord(Base):
    """Consecutive tracked-training attendance count per (player, subgroup)."""
    __tablename__ = 'streaks'

    id = Column(Integer, primary_key=True)
    player_id = Column(String(64), ForeignKey('accounts.id'), nullable=False, index=True)
    subgroup_id = Column(String(64), nullable=False)

    count = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime, default=func.now(), onupdate=func.now())

    player = relationship("Account", back_populates="streaks")

    __table_args__ = (
        UniqueConstraint('player_id', 'subgroup_id', name='uq_streak_player_subgroup'),
        CheckConstraint('count >= 0', name='non_negative_streak_check'),
    )

    def __repr__(self):
        return f"<StreakRecord(player_id='{self.player_id}', subgroup_id='{self.subgroup_id}', count={self.count})>"

class MilestoneProgress(Base):
    """Coach-declared achieved count of a player on a rewardable item."""
    __tablename__ = 'milestone_progress'

    id = Column(Integer, primary_key=True)
    player_id = Column(String(64), ForeignKey('accounts.id'), nullable=False, index=True)
    item_id = Column(String(64), nullable=False)
    item_type = Column(String(20), nullable=False)

    current_count = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('player_id', 'item_id', name='uq_milestone_player_item'),
    )

    def __repr__(self):
        return f"<MilestoneProgress(player_id='{self.player_id}', item_id='{self.item_id}', count={self.current_count})>"

class CompletionMarker(Base):
    """Marks that a player redeemed an item; enforces one-time challenges."""
    __tablename__ = 'completion_markers'

    id = Column(Integer, primary_key=True)
    player_id = Column(String(64), ForeignKey('accounts.id'), nullable=False, index=True)
    item_type = Column(String(20), nullable=False)
    item_id = Column(String(64), nullable=False)

    completed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('player_id', 'item_type', 'item_id', name='uq_completion_player_item'),
    )

    def __repr__(self):
        return f"<CompletionMarker(player_id='{self.player_id}', {self.item_type}='{self.item_id}')>"

class AttendanceRecord(Base):
    """Players marked present for one tracked training date of a subgroup."""
    __tablename__ = 'attendance_records'

    id = Column(Integer, primary_key=True)
    subgroup_id = Column(String(64), nullable=False)
    date = Column(Date, nullable=False)

    present_player_ids = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Concurrent saves of the same date conflict on this column
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint('subgroup_id', 'date', name='uq_attendance_subgroup_date'),
        Index('idx_attendance_subgroup_date', 'subgroup_id', 'date'),
    )

    def __repr__(self):
        return (f"<AttendanceRecord(subgroup_id='{self.subgroup_id}', date={self.date}, "
                f"present={len(self.present_player_ids or [])})>")

class Challenge(Base):
    """Coach-defined challenge (read-only for the ledger)."""
    __tablename__ = 'challenges'

    id = Column(String(64), primary_key=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)

    points = Column(Integer, nullable=False, default=0)
    milestones = Column(JSON, nullable=True)  # [{"count": 5, "points": 10}, ...]

    # Targeting
    subgroup_id = Column(String(64), nullable=False, default='all')

    # Redemption rules
    is_repeatable = Column(Boolean, nullable=False, default=True)
    last_reactivated_at = Column(DateTime, nullable=True)

    # Partner system
    has_partner_system = Column(Boolean, nullable=False, default=False)
    partner_percentage = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    @property
    def has_milestones(self) -> bool:
        return bool(self.milestones)

    @property
    def redeemable_since(self) -> datetime:
        """Timestamp after which a completion counts as a redemption"""
        return self.last_reactivated_at or self.created_at

    def __repr__(self):
        return f"<Challenge(id='{self.id}', title='{self.title}', repeatable={self.is_repeatable})>"

class Exercise(Base):
    """Coach-defined exercise (read-only for the ledger)."""
    __tablename__ = 'exercises'

    id = Column(String(64), primary_key=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)

    points = Column(Integer, nullable=False, default=0)
    milestones = Column(JSON, nullable=True)

    category = Column(String(100), nullable=True)
    tags = Column(JSON, nullable=False, default=list)

    # Partner system
    has_partner_system = Column(Boolean, nullable=False, default=False)
    partner_percentage = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    @property
    def has_milestones(self) -> bool:
        return bool(self.milestones)

    def __repr__(self):
        return f"<Exercise(id='{self.id}', title='{self.title}', category='{self.category}')>"
