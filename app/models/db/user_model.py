from sqlalchemy import Column, DateTime, Integer, String

from app.database import Base


class UserModel(Base):
    """SQLAlchemy model for the users table.

    Local projection of the external user directory: ids are assigned by the
    directory, never by this service.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=False)
    display_name = Column(String(255))
    first_name = Column(String(100))
    last_name = Column(String(100))
    email = Column(String(255), nullable=False, index=True)
    avatar_url = Column(String(1024))
    last_active_at = Column(DateTime(timezone=True))

    @property
    def resolved_display_name(self) -> str:
        full_name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return self.display_name or full_name or self.email or "Unknown"
