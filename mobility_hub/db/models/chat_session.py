"""
Chat Session Model - one versioned state machine record per WhatsApp user
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String

from mobility_hub.db.database import Base


class ChatSession(Base):
    """
    Durable conversation state for a single user.

    ``version`` is bumped by every write; writers use a conditional UPDATE on
    the version they read (see SessionStore.compare_and_swap).
    """

    __tablename__ = "chat_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(32), nullable=False, unique=True)  # WhatsApp id, e.g. 250788123456

    state = Column(String(64), nullable=False, default="MAIN_MENU")
    context = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    last_activity_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_chat_sessions_state_activity", "state", "last_activity_at"),
    )
