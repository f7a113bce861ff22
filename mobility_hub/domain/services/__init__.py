"""
Domain Services
"""
from mobility_hub.domain.services.admin_bridge_service import AdminBridgeService, BridgeResult
from mobility_hub.domain.services.command_runner import CommandRunner
from mobility_hub.domain.services.conversation_service import ConversationService, EventOutcome
from mobility_hub.domain.services.dedup_ledger import DedupLedger
from mobility_hub.domain.services.insurance_service import InsuranceService
from mobility_hub.domain.services.maintenance_service import MaintenanceService
from mobility_hub.domain.services.outbox_service import OutboxService, deliver_messages
from mobility_hub.domain.services.ride_service import RideService
from mobility_hub.domain.services.session_store import SessionStore, apply_transition
from mobility_hub.domain.services.vehicle_service import VehicleService

__all__ = [
    "AdminBridgeService",
    "BridgeResult",
    "CommandRunner",
    "ConversationService",
    "DedupLedger",
    "EventOutcome",
    "InsuranceService",
    "MaintenanceService",
    "OutboxService",
    "RideService",
    "SessionStore",
    "VehicleService",
    "apply_transition",
    "deliver_messages",
]
