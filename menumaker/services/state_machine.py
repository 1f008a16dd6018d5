"""
Order State Machine

    pending ──> confirmed ──> ready ──> fulfilled
       │            │           │
       └────────────┴───────────┴──> cancelled

Sequencing is strict: no step may be skipped and no state may transition
to itself. `fulfilled` and `cancelled` are terminal.
"""

from menumaker.core.exceptions import InvalidTransition
from menumaker.domain import OrderStatus

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.FULFILLED, OrderStatus.CANCELLED}),
    OrderStatus.FULFILLED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

INITIAL_STATUS = OrderStatus.PENDING


class OrderStateMachine:
    """Validates order status transitions."""

    transitions = TRANSITIONS

    def allowed_targets(self, current: OrderStatus) -> frozenset[OrderStatus]:
        return self.transitions[OrderStatus(current)]

    def is_terminal(self, status: OrderStatus) -> bool:
        return not self.allowed_targets(status)

    def can_transition(self, current: OrderStatus, target: OrderStatus) -> bool:
        return OrderStatus(target) in self.allowed_targets(current)

    def transition(self, current: OrderStatus, target: OrderStatus) -> OrderStatus:
        """
        Validate a move from `current` to `target`.

        Returns:
            OrderStatus: The target status

        Raises:
            InvalidTransition: If the move is not allowed
        """
        if not self.can_transition(current, target):
            raise InvalidTransition(current, target)
        return OrderStatus(target)

    @staticmethod
    def emits_confirmation(target: OrderStatus) -> bool:
        """Entering `confirmed` triggers the customer confirmation event."""
        return target == OrderStatus.CONFIRMED
