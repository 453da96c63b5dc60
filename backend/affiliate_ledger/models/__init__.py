from .affiliates import Affiliate, AffiliateLink
from .visits import Visit
from .referrals import Referral
from .payouts import PayoutRequest
from .commissions import Commission
from .audit_logs import AuditLog
from .system_settings import SystemSetting
from .email_queue import EmailQueue
