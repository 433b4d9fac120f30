from .cash_box_client import CashBoxClient
from .payment_methods_client import PaymentMethodsClient
from .sales_client import SalesClient
from .settings_client import SettingsClient

__all__ = [
    "CashBoxClient",
    "PaymentMethodsClient",
    "SalesClient",
    "SettingsClient",
]
