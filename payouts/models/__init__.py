from payouts.models.creator import CreatorProfile, CreatorTier, ApplicationStatus
from payouts.models.engagement import EngagementRecord
from payouts.models.revenue import RevenueTransaction
from payouts.models.commission import CommissionRecord, OrderStatus
from payouts.models.payout import Payout, PayoutStatus, AllocationRun

__all__ = [
    'CreatorProfile',
    'CreatorTier',
    'ApplicationStatus',
    'EngagementRecord',
    'RevenueTransaction',
    'CommissionRecord',
    'OrderStatus',
    'Payout',
    'PayoutStatus',
    'AllocationRun',
]
