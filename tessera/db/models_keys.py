"""SQLAlchemy model for persisted signing keys."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tessera.db.base import BaseEntity


class SigningKeyEntity(BaseEntity):
    """RSA signing key record; the private half is Fernet-encrypted."""

    __tablename__ = "signing_keys"

    kid: Mapped[str] = mapped_column(String(50), primary_key=True)
    algorithm: Mapped[str] = mapped_column(
        String(10), nullable=False, server_default="RS256"
    )
    private_key_pem: Mapped[str | None] = mapped_column(Text, nullable=True)
    public_key_pem: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    retire_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
