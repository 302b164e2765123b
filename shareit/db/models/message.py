import uuid

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shareit.db.base import BaseModel


class Message(BaseModel):
    """One chat line between two users. Only read by the dispute dossier."""

    __tablename__ = "messages"

    sender_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    receiver_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachment_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    attachment_type: Mapped[str | None] = mapped_column(String(20), nullable=True)  # image, video, file
    attachment_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    sender = relationship("User", foreign_keys=[sender_id], lazy="selectin")
