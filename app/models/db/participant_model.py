from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer
from sqlalchemy.orm import relationship

from app.database import Base
from app.utils.timestamps import utcnow


class ParticipantModel(Base):
    """SQLAlchemy model for participants table.

    Membership plus per-user read state. unread_count always equals the
    number of messages from other senders with id > last_read_message_id.
    """

    __tablename__ = "participants"
    __table_args__ = (
        CheckConstraint("unread_count >= 0", name="ck_participants_unread_nonneg"),
    )

    conversation_id = Column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True, index=True)
    unread_count = Column(Integer, nullable=False, default=0)
    last_read_message_id = Column(Integer, nullable=False, default=0)
    joined_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    conversation = relationship("ConversationModel", back_populates="participants")
    user = relationship("UserModel", lazy="joined")
