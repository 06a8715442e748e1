from careauth.core.db.crud.base import BaseDB
from careauth.core.db.crud.credential import CredentialDB
from careauth.core.db.crud.otp import OTPRecordDB
from careauth.core.db.crud.principal import (
    AdminDB,
    ClientDB,
    PrincipalDB,
    WorkerDB,
)
from careauth.core.enums import PrincipalKind

# Global CRUD instances - use these instead of creating new instances
otp_record_db = OTPRecordDB()
credential_db = CredentialDB()
client_db = ClientDB()
worker_db = WorkerDB()
admin_db = AdminDB()


def get_registry(kind: PrincipalKind) -> PrincipalDB:
    """Return the registry that owns principals of ``kind``."""
    match kind:
        case PrincipalKind.CLIENT:
            return client_db
        case PrincipalKind.WORKER:
            return worker_db
        case PrincipalKind.ADMIN:
            return admin_db
    raise ValueError(f"Unknown principal kind: {kind!r}")


__all__ = [
    # Classes (for type hints and subclassing)
    "AdminDB",
    "BaseDB",
    "ClientDB",
    "CredentialDB",
    "OTPRecordDB",
    "PrincipalDB",
    "WorkerDB",
    # Global instances (for actual usage)
    "admin_db",
    "client_db",
    "credential_db",
    "otp_record_db",
    "worker_db",
    "get_registry",
]
