"""Domain exceptions for the settlement engine."""

from uuid import UUID


class SettlementError(Exception):
    """Base class for settlement engine errors."""


class ReservationNotFound(SettlementError):
    """Raised when a reservation id does not exist."""

    def __init__(self, reservation_id: UUID):
        super().__init__(f"Reservation not found: {reservation_id}")
        self.reservation_id = reservation_id


class InvalidStatusTransition(SettlementError):
    """Raised when a reservation status change is not an allowed edge."""

    def __init__(self, reservation_id: UUID, current: str, requested: str):
        super().__init__(
            f"Cannot move reservation {reservation_id} from {current} to {requested}"
        )
        self.reservation_id = reservation_id
        self.current = current
        self.requested = requested


class IllegalSettlementTransition(SettlementError):
    """Raised when the settlement state machine is driven out of order."""

    def __init__(self, state: str, event: str):
        super().__init__(f"Event '{event}' is not valid in state {state}")
        self.state = state
        self.event = event


class DuplicateAward(SettlementError):
    """Raised when a loyalty award already exists for a source record."""

    def __init__(self, source_kind: str, source_id: UUID):
        super().__init__(f"Points already awarded for {source_kind} {source_id}")
        self.source_kind = source_kind
        self.source_id = source_id


class SettlementEscalation(SettlementError):
    """Raised when a paid reservation could not be confirmed.

    Money has moved but the booking record does not reflect it; this must
    reach an operator rather than be dropped.
    """

    def __init__(self, reservation_id: UUID, cause: str):
        super().__init__(
            f"Payment settled for reservation {reservation_id} but confirmation failed: {cause}"
        )
        self.reservation_id = reservation_id
        self.cause = cause
