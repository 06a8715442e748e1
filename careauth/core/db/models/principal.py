from datetime import datetime

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from careauth.core.db.models.base import BaseModel, UTCDateTime


class PrincipalModel(BaseModel):
    """Columns shared by every actor kind. Each kind owns a separate table."""

    __abstract__ = True

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )

    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    phone_number: Mapped[str | None] = mapped_column(
        String(32),
        unique=True,
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    last_login_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id={self.id}, email={self.email})>"


class Client(PrincipalModel):
    __tablename__ = "clients"


class Worker(PrincipalModel):
    __tablename__ = "workers"


class Admin(PrincipalModel):
    __tablename__ = "admins"

    is_admin: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Administrative privilege required by the admin guard",
    )

    role: Mapped[str] = mapped_column(
        String(50),
        default="admin",
        nullable=False,
    )


__all__ = ["PrincipalModel", "Client", "Worker", "Admin"]
