# studiopass/app/services/__init__.py
"""
Services layer for business logic.
Keeps API endpoints thin and business logic testable and reusable.
"""

from studiopass.app.services.tariffs import (
    TariffCatalog,
    TariffNotFoundError,
)
from studiopass.app.services.subscription import (
    SubscriptionLedger,
    TariffInvalidError,
    SubscriptionNotFoundError,
    InsufficientSessionsError,
)
from studiopass.app.services.qr_codes import (
    QrCodeService,
    NoActiveSubscriptionError,
    NoSessionsLeftError,
    InvalidCodeError,
    CodeExpiredError,
    CodeAlreadyUsedError,
    OperatorNotAuthorizedError,
)
from studiopass.app.services.payment import (
    PaymentService,
    PaymentNotConfiguredError,
    PaymentNotFoundError,
    UserNotFoundError,
)

__all__ = [
    # Tariff catalog
    "TariffCatalog",
    "TariffNotFoundError",
    # Subscription ledger
    "SubscriptionLedger",
    "TariffInvalidError",
    "SubscriptionNotFoundError",
    "InsufficientSessionsError",
    # QR redemption
    "QrCodeService",
    "NoActiveSubscriptionError",
    "NoSessionsLeftError",
    "InvalidCodeError",
    "CodeExpiredError",
    "CodeAlreadyUsedError",
    "OperatorNotAuthorizedError",
    # Payments
    "PaymentService",
    "PaymentNotConfiguredError",
    "PaymentNotFoundError",
    "UserNotFoundError",
]
