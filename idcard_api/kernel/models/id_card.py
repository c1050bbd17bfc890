"""
ID card records owned by a user.
"""

import uuid
from typing import Any, Dict

from sqlalchemy import ForeignKey, JSON, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from idcard_api.kernel.models.base import Base, TimestampMixin, generate_uuid


class IdCard(Base, TimestampMixin):
    """A user's ID card; verification tokens are minted against its owner."""

    __tablename__ = "id_cards"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    display_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    attributes: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    def __repr__(self) -> str:
        return f"<IdCard {self.display_name}>"
