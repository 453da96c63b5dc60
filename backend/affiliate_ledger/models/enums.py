from enum import Enum

# Stored as plain strings (native enums disabled for easier evolution).


class AffiliateStatusEnum(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REJECTED = "rejected"


class PayoutMethodEnum(str, Enum):
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    CRYPTO = "crypto"


class ReferralStatusEnum(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ConversionTypeEnum(str, Enum):
    SUBSCRIPTION = "subscription"
    ONE_TIME = "one_time"


class CommissionTypeEnum(str, Enum):
    ONE_TIME = "one_time"
    RECURRING = "recurring"
