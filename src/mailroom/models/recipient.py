import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from mailroom.models.base import Base

ADDRESS_FIELDS = ("address1", "address2", "city", "state", "zipcode", "country")


class Recipient(Base):
    __tablename__ = "recipients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str] = mapped_column(String(128))
    last_name: Mapped[str] = mapped_column(String(128))
    mailing_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)

    address1: Mapped[str | None] = mapped_column(String(256), nullable=True)
    address2: Mapped[str | None] = mapped_column(String(256), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    state: Mapped[str | None] = mapped_column(String(128), nullable=True)
    zipcode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    country: Mapped[str | None] = mapped_column(String(128), nullable=True)

    address_validation_status: Mapped[str] = mapped_column(String(32), default="pending", index=True)
    address_validation_message: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    address_validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    validated_address1: Mapped[str | None] = mapped_column(String(256), nullable=True)
    validated_address2: Mapped[str | None] = mapped_column(String(256), nullable=True)
    validated_city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    validated_state: Mapped[str | None] = mapped_column(String(128), nullable=True)
    validated_zipcode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    validated_country: Mapped[str | None] = mapped_column(String(128), nullable=True)

    access_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
