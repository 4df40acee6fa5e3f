from gomi_credits.models.user import User
from gomi_credits.models.credit_ledger import CreditTransaction
from gomi_credits.models.device_record import DeviceRecord
from gomi_credits.models.ip_record import IPRecord
from gomi_credits.models.audit_log import AuditLog

__all__ = [
    "User",
    "CreditTransaction",
    "DeviceRecord",
    "IPRecord",
    "AuditLog",
]
