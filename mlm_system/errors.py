"""
Error taxonomy of the commission engine.

Fatal errors abort a calculation and reach the caller; the order stays
unreconciled and is retried. Per-level problems are not exceptions, they
are reported as skipped levels in the calculation result.
"""
from typing import List, Optional


class MLMError(Exception):
    """Base class for commission engine errors."""
    pass


class NotFoundError(MLMError):
    """Required entity (distributor, matrix position, order) is missing."""

    def __init__(self, entity: str, entityId, message: Optional[str] = None):
        self.entity = entity
        self.entityId = entityId
        super().__init__(message or f"{entity} {entityId} not found")


class CorruptGenealogyError(MLMError):
    """Cyclic or malformed upline chain. Needs manual data repair."""

    def __init__(self, userId: int, chain: List[int]):
        self.userId = userId
        self.chain = list(chain)
        super().__init__(
            f"Cycle detected in matrix genealogy at user {userId} "
            f"(path: {' -> '.join(str(x) for x in self.chain)})"
        )


class InvalidRuleSet(MLMError):
    """Compensation plan failed validation. Blocks all calculations."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid compensation plan: " + "; ".join(self.errors))


class OrderNotPaidError(MLMError):
    """Commission calculation requested for an order that is not paid."""

    def __init__(self, orderId: int, paymentStatus: str):
        self.orderId = orderId
        self.paymentStatus = paymentStatus
        super().__init__(f"Order {orderId} is not paid (paymentStatus={paymentStatus})")
