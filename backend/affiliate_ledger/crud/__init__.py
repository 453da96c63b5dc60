from .affiliates import create_affiliate, get_affiliate, get_affiliate_by_code, create_link, get_link
from .visits import create_visit, get_visit
from .referrals import create_referral, get_referral, get_referral_by_order
from .commissions import create_commission, sum_commissions
from .payouts import create_payout, get_payout
from .audit import create_audit_log, list_audit_logs
from .system_settings import get_setting, upsert_setting
from .email_queue import create_email_queue
