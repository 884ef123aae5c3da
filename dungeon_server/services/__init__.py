from .audit import AuditTrail, session_metadata
from .correlation import RequestCorrelator
from .ledger import SessionLedger, final_allocations
from .negotiation import SessionNegotiator, WeightPolicy
from .rpc_client import ConnectionStatus, SettlementClient
from .sessions import ActiveSession, PendingSession, SessionArena

__all__ = [
    "AuditTrail",
    "session_metadata",
    "RequestCorrelator",
    "SessionLedger",
    "final_allocations",
    "SessionNegotiator",
    "WeightPolicy",
    "ConnectionStatus",
    "SettlementClient",
    "ActiveSession",
    "PendingSession",
    "SessionArena",
]
