from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from app.database import Base
from app.utils.timestamps import utcnow


class MessageModel(Base):
    """SQLAlchemy model for messages table.

    Rows are append-only. ``id`` is allocated per conversation from
    ``conversations.message_seq`` and doubles as the pagination cursor.
    """

    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint(
            "content_format IN ('plain', 'html')",
            name="ck_messages_content_format",
        ),
    )

    conversation_id = Column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        primary_key=True,
    )
    id = Column(Integer, primary_key=True, autoincrement=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    content_format = Column(String(10), nullable=False, default="html")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    edited_at = Column(DateTime(timezone=True))
    is_deleted = Column(Boolean, nullable=False, default=False)

    # Relationships
    conversation = relationship("ConversationModel", back_populates="messages")
    sender = relationship("UserModel", lazy="joined")
