from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.database import Base
from app.utils.timestamps import utcnow


class ConversationModel(Base):
    """SQLAlchemy model for conversations table."""

    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(100))
    is_group = Column(Boolean, nullable=False, default=False)
    # "<low>:<high>" user ids for 1:1 conversations, NULL for groups
    direct_key = Column(String(64), unique=True)
    # Last allocated message id; appends bump it under a row lock
    message_seq = Column(Integer, nullable=False, default=0)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    # Denormalized last message snapshot
    last_message_id = Column(Integer)
    last_message_sender_id = Column(Integer)
    last_message_sender_name = Column(String(255))
    last_message_preview = Column(Text)
    last_message_at = Column(DateTime(timezone=True))

    # Relationships
    messages = relationship(
        "MessageModel", back_populates="conversation", cascade="all, delete-orphan"
    )
    participants = relationship(
        "ParticipantModel", back_populates="conversation", cascade="all, delete-orphan"
    )
