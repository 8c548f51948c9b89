import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from accesscore.database import Base


class UserOrganization(Base):
    """A user's membership in one organization, holding exactly one role."""

    __tablename__ = "user_organizations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    role_slug: Mapped[str] = mapped_column(
        String(50), ForeignKey("roles.slug"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # At most one active primary membership per user
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)

    joined_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
