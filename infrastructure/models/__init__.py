"""Infrastructure models package exports."""
from .base import Base, ExternalTable, is_owned, metadata, utcnow
from .settlement import SettlementModel, WebhookEventModel
from .marketplace import AdminSettingModel, BookingModel, BookingRequestModel, CoachModel

__all__ = [
    "Base",
    "metadata",
    "ExternalTable",
    "is_owned",
    "utcnow",
    "SettlementModel",
    "WebhookEventModel",
    "AdminSettingModel",
    "BookingModel",
    "BookingRequestModel",
    "CoachModel",
]
