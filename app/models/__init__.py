from .audit import AuditLog
from .error_log import ErrorLog
from .order import Order, OrderItem
from .payment_event import PaymentEventLog
from .security_log import SecurityLog
from .template import Template

__all__ = [
    "AuditLog",
    "ErrorLog",
    "Order",
    "OrderItem",
    "PaymentEventLog",
    "SecurityLog",
    "Template",
]
