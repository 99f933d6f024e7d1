from .confirm import ConfirmationOutcome, ConfirmationResult, OrderConfirmation, ReissueResult
from .ingest import OrderIngestor
from .mailer import OrderMailer

__all__ = [
    "ConfirmationOutcome",
    "ConfirmationResult",
    "OrderConfirmation",
    "OrderIngestor",
    "OrderMailer",
    "ReissueResult",
]
