from datetime import datetime, timezone
import enum


# ============================================================================
# ENUMS
# ============================================================================

class EntityKind(str, enum.Enum):
    """Exportable Magento collections"""
    ORDERS = "orders"
    CUSTOMERS = "customers"


class StageName(str, enum.Enum):
    """Pipeline stages"""
    DOWNLOAD = "download"
    PROCESS = "process"


class ErrorLevel(str, enum.Enum):
    """Severity of an entry in a checkpoint's error list"""
    ERROR = "error"
    WARNING = "warning"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
