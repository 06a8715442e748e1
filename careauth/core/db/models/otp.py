"""
OTP record model for one-time verification codes.

"""

from datetime import datetime

from sqlalchemy import Enum, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from careauth.core.db.models.base import BaseModel, UTCDateTime, enum_values, utcnow
from careauth.core.enums import OTPPurpose, OTPStatus, OwnerKind

_PENDING = text("status = 'pending'")
_PENDING_GENERIC = text("status = 'pending' AND owner_id IS NULL")


class OTPRecord(BaseModel):
    """
    A one-time code issued to an identifier for a single purpose.

    The owner is a closed tag (``owner_kind``) plus an integer id; pre-account
    flows use ``OwnerKind.GENERIC`` with a null ``owner_id`` and are keyed by
    ``identifier`` instead. The code itself is only stored as Fernet
    ciphertext.

    Attributes:
        owner_kind: Which principal table ``owner_id`` refers to.
        owner_id: Principal id, or None for pre-account flows.
        identifier: Email or phone number the code was sent to.
        purpose: The flow this code gates.
        code_ciphertext: Encrypted code.
        status: pending -> verified | expired | failed.
        expires_at: Hard expiry; checked lazily on read.
        verified_at: Set exactly when status becomes verified.
        attempts: Verification attempts consumed so far.
        max_attempts: Attempt budget fixed at issuance.
    """

    __tablename__ = "otp_records"
    __table_args__ = (
        Index("ix_otp_records_owner", "owner_kind", "owner_id"),
        Index("ix_otp_records_identifier_purpose", "identifier", "purpose"),
        Index("ix_otp_records_status_expires_at", "status", "expires_at"),
        # At most one pending record per owner tuple
        Index(
            "uq_otp_records_pending_owner",
            "owner_kind",
            "owner_id",
            "purpose",
            unique=True,
            postgresql_where=_PENDING,
            sqlite_where=_PENDING,
        ),
        Index(
            "uq_otp_records_pending_identifier",
            "owner_kind",
            "identifier",
            "purpose",
            unique=True,
            postgresql_where=_PENDING_GENERIC,
            sqlite_where=_PENDING_GENERIC,
        ),
    )

    owner_kind: Mapped[OwnerKind] = mapped_column(
        Enum(
            OwnerKind,
            native_enum=False,
            name="otp_owner_kind",
            values_callable=enum_values,
        ),
        nullable=False,
    )

    owner_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    identifier: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    purpose: Mapped[OTPPurpose] = mapped_column(
        Enum(
            OTPPurpose,
            native_enum=False,
            name="otp_purpose",
            values_callable=enum_values,
        ),
        nullable=False,
    )

    code_ciphertext: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    status: Mapped[OTPStatus] = mapped_column(
        Enum(
            OTPStatus,
            native_enum=False,
            name="otp_status",
            values_callable=enum_values,
        ),
        default=OTPStatus.PENDING,
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
    )

    verified_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )

    attempts: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    max_attempts: Mapped[int] = mapped_column(
        Integer,
        default=3,
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<OTPRecord(id={self.id}, owner={self.owner_kind.value}:{self.owner_id}, "
            f"purpose={self.purpose.value}, status={self.status.value}, "
            f"attempts={self.attempts}/{self.max_attempts})>"
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempts, 0)


__all__ = ["OTPRecord"]
