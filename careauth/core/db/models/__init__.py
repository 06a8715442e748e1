from careauth.core.db.models.credential import Credential
from careauth.core.db.models.otp import OTPRecord
from careauth.core.db.models.principal import Admin, Client, PrincipalModel, Worker

__all__ = [
    "Admin",
    "Client",
    "Credential",
    "OTPRecord",
    "PrincipalModel",
    "Worker",
]
