"""
Entity State Machines
Allowed status transitions for leads, calls, orders and payments.

Services never write a status directly: they ask the machine which
states may lead to the target and pass those as the compare-and-set
precondition, so a concurrent or duplicate event cannot overwrite a
state it does not apply to.
"""
from typing import Dict, List, Set

from salescaller.domain.exceptions import ConflictError
from salescaller.domain.models.call import CallStatus
from salescaller.domain.models.lead import LeadStatus
from salescaller.domain.models.order import OrderStatus
from salescaller.domain.models.payment import PaymentStatus


class StateMachine:
    """Transition table for one entity kind"""

    def __init__(self, entity: str, transitions: Dict[str, Set[str]]):
        self.entity = entity
        self._transitions = transitions

    @property
    def states(self) -> List[str]:
        return list(self._transitions.keys())

    def is_terminal(self, state: str) -> bool:
        return not self._transitions.get(state)

    def can_transition(self, current: str, target: str) -> bool:
        return target in self._transitions.get(current, set())

    def assert_transition(self, current: str, target: str) -> None:
        if not self.can_transition(current, target):
            raise ConflictError(
                f"{self.entity} cannot move from {current} to {target}",
                {"entity": self.entity, "from": current, "to": target}
            )

    def sources_for(self, target: str) -> List[str]:
        """States from which `target` is reachable in one step"""
        return [state for state, targets in self._transitions.items() if target in targets]


def _values(*members) -> Set[str]:
    return {m.value for m in members}


CALL_STATE_MACHINE = StateMachine("CallLog", {
    CallStatus.SCHEDULED.value: _values(CallStatus.IN_PROGRESS, CallStatus.COMPLETED, CallStatus.FAILED),
    CallStatus.IN_PROGRESS.value: _values(CallStatus.COMPLETED, CallStatus.FAILED),
    CallStatus.COMPLETED.value: set(),
    CallStatus.FAILED.value: set(),
})

PAYMENT_STATE_MACHINE = StateMachine("Payment", {
    PaymentStatus.PENDING.value: _values(PaymentStatus.COMPLETED, PaymentStatus.FAILED),
    PaymentStatus.COMPLETED.value: set(),
    PaymentStatus.FAILED.value: set(),
})

ORDER_STATE_MACHINE = StateMachine("Order", {
    OrderStatus.PENDING.value: _values(OrderStatus.PAID, OrderStatus.COD_CONFIRMED, OrderStatus.CANCELLED),
    OrderStatus.COD_CONFIRMED.value: _values(OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    OrderStatus.PAID.value: _values(OrderStatus.SHIPPED, OrderStatus.REFUNDED),
    OrderStatus.SHIPPED.value: _values(OrderStatus.DELIVERED, OrderStatus.REFUNDED),
    OrderStatus.DELIVERED.value: _values(OrderStatus.REFUNDED),
    OrderStatus.CANCELLED.value: set(),
    OrderStatus.REFUNDED.value: set(),
})

# Leads move freely through the pipeline; DNC is the only terminal state
LEAD_STATE_MACHINE = StateMachine("Lead", {
    status.value: (
        set()
        if status == LeadStatus.DNC
        else {other.value for other in LeadStatus if other != status}
    )
    for status in LeadStatus
})
