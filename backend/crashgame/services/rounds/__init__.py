"""Round services: the engine, its scheduler and its collaborators.

Transport code (Socket.IO handlers, HTTP routes) should only talk to the
RoundEngine; everything in here is independent of Flask except the
recorder, which needs an app context to reach the database.
"""

from .broadcast import BroadcastHub, SocketHandle
from .engine import RoundEngine
from .scheduler import SerialScheduler, TimerHandle
from .settlement import (
    DryRunPayoutClient,
    PayoutGatewayClient,
    PayoutRequest,
    SettlementWorker,
    build_payout_client,
)

__all__ = [
    'BroadcastHub',
    'SocketHandle',
    'RoundEngine',
    'SerialScheduler',
    'TimerHandle',
    'DryRunPayoutClient',
    'PayoutGatewayClient',
    'PayoutRequest',
    'SettlementWorker',
    'build_payout_client',
]
