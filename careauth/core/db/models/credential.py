"""
Bearer credential model, one row per issued token.

"""

from datetime import datetime

from sqlalchemy import Boolean, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from careauth.core.db.models.base import BaseModel, UTCDateTime, enum_values, utcnow
from careauth.core.enums import PrincipalKind


class Credential(BaseModel):
    """
    An opaque bearer token bound to exactly one guard and principal.

    Only the SHA256 hash of the token is stored; the plaintext is returned
    once at issuance. ``principal_id`` is not a foreign key because the
    referenced table depends on ``principal_kind``.

    Attributes:
        principal_kind: Guard the token was issued under.
        principal_id: Id of the principal in that guard's table.
        token_hash: SHA256 hex digest of the token.
        expires_at: Per-guard expiry.
        device_info: Optional client/device description.
        revoked: Whether the token has been revoked (terminal).
        revoked_at: When it was revoked.

    Example:
        >>> credential = Credential(
        ...     principal_kind=PrincipalKind.CLIENT,
        ...     principal_id=42,
        ...     token_hash=hash_token(token),
        ...     expires_at=utcnow() + timedelta(days=7),
        ... )
    """

    __tablename__ = "credentials"
    __table_args__ = (
        Index("ix_credentials_principal", "principal_kind", "principal_id"),
    )

    principal_kind: Mapped[PrincipalKind] = mapped_column(
        Enum(
            PrincipalKind,
            native_enum=False,
            name="credential_principal_kind",
            values_callable=enum_values,
        ),
        nullable=False,
    )

    principal_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    token_hash: Mapped[str] = mapped_column(
        String(64),  # SHA256 produces 64 hex characters
        unique=True,
        index=True,
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        index=True,
    )

    device_info: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    revoked: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    revoked_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Credential(id={self.id}, principal={self.principal_kind.value}:"
            f"{self.principal_id}, expires_at={self.expires_at}, revoked={self.revoked})>"
        )

    @property
    def issued_at(self) -> datetime:
        return self.created_at

    @property
    def is_valid(self) -> bool:
        """Check if the token is still valid (not expired and not revoked)."""
        return not self.revoked and self.expires_at > utcnow()


__all__ = ["Credential"]
