"""
GENERIC STATE MACHINE UTILITY

A reusable state machine for ledger entity status transitions with:
- Transition registration with handlers
- Transition validation
- Handler execution inside an existing store transaction
- Invalid transition rejection

Usage:
    # Define state machine
    payment_machine = StateMachine("payment")
    payment_machine.register("PENDING", "COMPLETED", complete_handler)
    payment_machine.register("COMPLETED", "CANCELLED", refund_handler)

    # Execute transition (inside transaction)
    await payment_machine.transition(payment_doc, "COMPLETED", txn=txn, context={...})
"""

from typing import Dict, Any, Optional, Callable, Awaitable, List, Set, Tuple
from datetime import datetime
import logging

from ledger.errors import LedgerError, InvalidTransitionError

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class StateMachineError(Exception):
    """Base exception for state machine wiring errors."""
    pass


class TransitionHandlerError(StateMachineError):
    """Raised when a transition handler fails with a non-ledger error."""
    def __init__(self, entity: str, from_state: str, to_state: str, original_error: Exception):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.original_error = original_error
        message = f"Handler failed for {entity}: '{from_state}' -> '{to_state}': {str(original_error)}"
        super().__init__(message)


class GuardConditionError(LedgerError):
    """Raised when a guard condition prevents a transition."""
    error_type = "GUARD_REJECTED"

    def __init__(self, entity: str, from_state: str, to_state: str, reason: str):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        super().__init__(
            f"Guard blocked {entity}: '{from_state}' -> '{to_state}': {reason}",
            details={"entity": entity, "from_state": from_state, "to_state": to_state, "reason": reason}
        )


# =============================================================================
# TYPE DEFINITIONS
# =============================================================================

# Handler signature: async def handler(entity_doc, context, txn) -> Dict[str, Any]
# The returned dict holds extra fields to write alongside the new status.
TransitionHandler = Callable[[Dict[str, Any], Dict[str, Any], Any], Awaitable[Optional[Dict[str, Any]]]]

# Guard signature: async def guard(entity_doc, context) -> Tuple[bool, str]
GuardCondition = Callable[[Dict[str, Any], Dict[str, Any]], Awaitable[Tuple[bool, str]]]


class Transition:
    """Definition of a state transition."""

    def __init__(
        self,
        from_state: str,
        to_state: str,
        handler: TransitionHandler,
        guard: Optional[GuardCondition] = None,
        description: str = ""
    ):
        self.from_state = from_state
        self.to_state = to_state
        self.handler = handler
        self.guard = guard
        self.description = description

    def __repr__(self):
        return f"Transition({self.from_state} -> {self.to_state})"


# =============================================================================
# STATE MACHINE
# =============================================================================

class StateMachine:
    """
    State machine for one ledger entity.

    Handlers run inside the caller's store transaction; any LedgerError they
    raise (e.g. InsufficientFundsError) propagates unchanged so the
    transaction aborts with the original error kind.
    """

    def __init__(self, entity_name: str, status_field: str = "status"):
        self.entity_name = entity_name
        self.status_field = status_field

        # Transitions indexed by (from_state, to_state)
        self._transitions: Dict[Tuple[str, str], Transition] = {}
        self._states: Set[str] = set()

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def register(
        self,
        from_state: str,
        to_state: str,
        handler: TransitionHandler,
        guard: Optional[GuardCondition] = None,
        description: str = ""
    ) -> "StateMachine":
        """Register a state transition. Returns self for chaining."""
        key = (from_state, to_state)

        if key in self._transitions:
            logger.warning(
                f"[STATE_MACHINE] Overwriting transition {self.entity_name}: "
                f"'{from_state}' -> '{to_state}'"
            )

        self._transitions[key] = Transition(
            from_state=from_state,
            to_state=to_state,
            handler=handler,
            guard=guard,
            description=description
        )
        self._states.add(from_state)
        self._states.add(to_state)
        return self

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def get_allowed_transitions(self, from_state: str) -> List[str]:
        """Get list of valid target states from a given state."""
        return [dst for (src, dst) in self._transitions.keys() if src == from_state]

    def can_transition(self, from_state: str, to_state: str) -> bool:
        """Check if transition is registered (does not check guards)."""
        return (from_state, to_state) in self._transitions

    def validate_transition(self, from_state: str, to_state: str) -> None:
        """Raises InvalidTransitionError if the transition is not registered."""
        if not self.can_transition(from_state, to_state):
            raise InvalidTransitionError(
                entity=self.entity_name,
                from_state=from_state,
                to_state=to_state,
                allowed=self.get_allowed_transitions(from_state)
            )

    async def check_guard(
        self,
        entity_doc: Dict[str, Any],
        from_state: str,
        to_state: str,
        context: Dict[str, Any]
    ) -> None:
        """Raises GuardConditionError if the guard rejects."""
        transition = self._transitions.get((from_state, to_state))

        if transition and transition.guard:
            allowed, reason = await transition.guard(entity_doc, context)
            if not allowed:
                raise GuardConditionError(
                    entity=self.entity_name,
                    from_state=from_state,
                    to_state=to_state,
                    reason=reason
                )

    # =========================================================================
    # TRANSITION EXECUTION
    # =========================================================================

    async def transition(
        self,
        entity_doc: Dict[str, Any],
        to_state: str,
        txn: Any = None,
        context: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Execute a state transition.

        Returns:
            Result dict with:
            - from_state: Previous state
            - to_state: New state
            - updates: fields to write (status, updated_at, handler fields)
            - handler_result: Result from handler

        Raises:
            InvalidTransitionError: If transition not registered
            GuardConditionError: If guard condition fails
            LedgerError: Re-raised from the handler as is
            TransitionHandlerError: If handler fails any other way
        """
        context = context or {}

        from_state = entity_doc.get(self.status_field)
        if from_state is None:
            raise StateMachineError(
                f"Entity missing status field: {self.status_field}"
            )

        self.validate_transition(from_state, to_state)
        await self.check_guard(entity_doc, from_state, to_state, context)

        transition = self._transitions[(from_state, to_state)]

        logger.info(
            f"[STATE_MACHINE] Executing {self.entity_name} {entity_doc.get('id')}: "
            f"'{from_state}' -> '{to_state}'"
        )

        try:
            handler_result = await transition.handler(entity_doc, context, txn)
        except LedgerError:
            raise
        except Exception as e:
            logger.error(
                f"[STATE_MACHINE] Handler failed {self.entity_name}: "
                f"'{from_state}' -> '{to_state}': {e}"
            )
            raise TransitionHandlerError(
                entity=self.entity_name,
                from_state=from_state,
                to_state=to_state,
                original_error=e
            )

        updates = {
            self.status_field: to_state,
            "updated_at": datetime.utcnow()
        }
        updates.update(handler_result or {})

        return {
            "from_state": from_state,
            "to_state": to_state,
            "updates": updates,
            "handler_result": handler_result or {}
        }

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def get_states(self) -> List[str]:
        return sorted(self._states)

    def get_graph(self) -> Dict[str, List[str]]:
        """Get state graph as adjacency list."""
        graph = {state: [] for state in self._states}
        for (src, dst) in self._transitions.keys():
            graph[src].append(dst)
        return graph

    def __repr__(self):
        return (
            f"StateMachine({self.entity_name}, "
            f"states={len(self._states)}, "
            f"transitions={len(self._transitions)})"
        )
