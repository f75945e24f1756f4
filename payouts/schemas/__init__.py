from payouts.schemas.creator import (
    CreatorCreate,
    CreatorTierUpdate,
    CreatorResponse,
    CreatorStats,
    TopRecipe,
    EarningsEstimate,
)
from payouts.schemas.engagement import EngagementCreate, EngagementResponse, CreatorResResponse
from payouts.schemas.revenue import (
    FeeBreakdown,
    TransactionCreate,
    TransactionResponse,
    CreatorPoolResponse,
)
from payouts.schemas.commission import (
    CommissionCreate,
    OrderStatusUpdate,
    CommissionResponse,
    CommissionTotalResponse,
)
from payouts.schemas.payout import (
    AllocationRequest,
    RetryRequest,
    PayoutResponse,
    AllocationResponse,
)

__all__ = [
    'CreatorCreate',
    'CreatorTierUpdate',
    'CreatorResponse',
    'CreatorStats',
    'TopRecipe',
    'EarningsEstimate',
    'EngagementCreate',
    'EngagementResponse',
    'CreatorResResponse',
    'FeeBreakdown',
    'TransactionCreate',
    'TransactionResponse',
    'CreatorPoolResponse',
    'CommissionCreate',
    'OrderStatusUpdate',
    'CommissionResponse',
    'CommissionTotalResponse',
    'AllocationRequest',
    'RetryRequest',
    'PayoutResponse',
    'AllocationResponse',
]
