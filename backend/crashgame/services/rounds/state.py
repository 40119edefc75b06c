from dataclasses import dataclass, field
from typing import Dict, List, Optional


WAITING = 'waiting'
RUNNING = 'running'
ENDED = 'ended'

# The only reachable phase changes
TRANSITIONS = {
    WAITING: RUNNING,
    RUNNING: ENDED,
    ENDED: WAITING,
}


@dataclass
class Stake:
    address: str
    amount: float
    joined_at: float
    has_withdrawn: bool = False
    withdraw_multiplier: Optional[float] = None
    external_reference: Optional[str] = None

    def to_dict(self):
        return {
            'address': self.address,
            'stake': self.amount,
            'hasWithdrawn': self.has_withdrawn,
            'withdrawMultiplier': self.withdraw_multiplier,
        }


@dataclass
class QueuedStake:
    address: str
    amount: float
    queued_at: float
    external_reference: Optional[str] = None

    def to_dict(self):
        return {
            'address': self.address,
            'amount': self.amount,
            'queuedAt': self.queued_at,
            'transactionId': self.external_reference,
        }


@dataclass
class RoundState:
    """The one shared record every broadcast is derived from."""
    phase: str = WAITING
    round_id: int = 0
    players: Dict[str, Stake] = field(default_factory=dict)
    pending_queue: Dict[str, QueuedStake] = field(default_factory=dict)
    started_at: Optional[float] = None
    crash_at: Optional[float] = None
    current_multiplier: float = 1.0
    # Value carried by the latest multiplier_update; payouts use this one
    displayed_multiplier: float = 1.0

    def stakes(self) -> List[dict]:
        return [stake.to_dict() for stake in self.players.values()]

    def total_stake_amount(self) -> float:
        return sum(stake.amount for stake in self.players.values())

    def active_addresses(self) -> List[str]:
        return [addr for addr, stake in self.players.items() if not stake.has_withdrawn]


@dataclass
class JoinResult:
    success: bool
    queued: bool
    outcome: str
    message: str

    def to_message(self):
        return {
            'type': 'join_result',
            'success': self.success,
            'queued': self.queued,
            'message': self.message,
        }


@dataclass
class WithdrawResult:
    success: bool
    outcome: str
    message: str
    payout: Optional[float] = None
    multiplier: Optional[float] = None

    def to_message(self):
        return {
            'type': 'withdraw_result',
            'success': self.success,
            'payout': self.payout,
            'message': self.message,
        }


# join outcomes
ACCEPTED = 'accepted'
QUEUED = 'queued'
ALREADY_QUEUED = 'already_queued'
ALREADY_IN_ROUND = 'already_in_round'
INVALID_STAKE = 'invalid_stake'
REJECTED = 'rejected'

# withdraw outcomes
PAID = 'paid'
NOT_APPLICABLE = 'not_applicable'
ALREADY_WITHDRAWN = 'already_withdrawn'
