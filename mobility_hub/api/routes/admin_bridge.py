"""
Admin Bridge Endpoints - backoffice actions that notify the user and move
their conversation forward.

All routes require X-Admin-API-Key. Messages are queued in the same
transaction as the record change and sent in the background.
"""
from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import async_sessionmaker

from mobility_hub.api.dependencies.admin_auth import require_admin_api_key
from mobility_hub.core.logging import get_logger
from mobility_hub.db.database import get_session_factory
from mobility_hub.domain.services.admin_bridge_service import AdminBridgeService, BridgeResult
from mobility_hub.domain.services.outbox_service import deliver_messages
from mobility_hub.state_machine import dispatcher

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


# ─── Pydantic models ────────────────────────────────────────────────────────

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AttachQuoteRequest(_CamelModel):
    quote_id: int = Field(alias="quoteId", gt=0)
    document_ref: str = Field(alias="documentRef", min_length=1, max_length=500)
    amount: int = Field(gt=0, description="Premium in RWF")


class IssueCertificateRequest(_CamelModel):
    quote_id: int = Field(alias="quoteId", gt=0)
    certificate_ref: str = Field(alias="certificateRef", min_length=1, max_length=500)


class VerifyVehicleRequest(_CamelModel):
    vehicle_id: int = Field(alias="vehicleId", gt=0)


class ActivateProviderRequest(_CamelModel):
    provider_id: int = Field(alias="providerId", gt=0)


class RecordPaymentRequest(_CamelModel):
    quote_id: int = Field(alias="quoteId", gt=0)
    amount: int = Field(gt=0)
    payer_identity: str = Field(alias="payerIdentity", min_length=1, max_length=100)
    provider_reference: str = Field(alias="providerReference", min_length=1, max_length=100)


class BridgeResponse(BaseModel):
    success: bool = True
    messagesQueued: int


# ─── Helpers ────────────────────────────────────────────────────────────────

def get_admin_bridge_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> AdminBridgeService:
    return AdminBridgeService(session_factory, dispatcher)


def _respond(
    result: BridgeResult,
    service: AdminBridgeService,
    background_tasks: BackgroundTasks,
) -> BridgeResponse:
    if result.outbox_ids:
        background_tasks.add_task(
            deliver_messages, service.session_factory, ids=list(result.outbox_ids)
        )
    return BridgeResponse(messagesQueued=result.messages_queued)


# ─── Endpoints ──────────────────────────────────────────────────────────────

@router.post(
    "/quotes/attach",
    response_model=BridgeResponse,
    summary="Attach a priced quotation",
    responses={404: {"description": "Unknown quote"}, 409: {"description": "Wrong quote status"}},
)
async def attach_quote(
    body: AttachQuoteRequest,
    background_tasks: BackgroundTasks,
    service: AdminBridgeService = Depends(get_admin_bridge_service),
) -> BridgeResponse:
    result = await service.attach_quote(body.quote_id, body.document_ref, body.amount)
    return _respond(result, service, background_tasks)


@router.post(
    "/certificates/issue",
    response_model=BridgeResponse,
    summary="Issue the insurance certificate",
    responses={404: {"description": "Unknown quote"}, 409: {"description": "Quote not paid"}},
)
async def issue_certificate(
    body: IssueCertificateRequest,
    background_tasks: BackgroundTasks,
    service: AdminBridgeService = Depends(get_admin_bridge_service),
) -> BridgeResponse:
    result = await service.issue_certificate(body.quote_id, body.certificate_ref)
    return _respond(result, service, background_tasks)


@router.post(
    "/vehicles/verify",
    response_model=BridgeResponse,
    summary="Mark a registered vehicle as verified",
    responses={404: {"description": "Unknown vehicle"}},
)
async def verify_vehicle(
    body: VerifyVehicleRequest,
    background_tasks: BackgroundTasks,
    service: AdminBridgeService = Depends(get_admin_bridge_service),
) -> BridgeResponse:
    result = await service.verify_vehicle(body.vehicle_id)
    return _respond(result, service, background_tasks)


@router.post(
    "/providers/activate",
    response_model=BridgeResponse,
    summary="Activate a pending driver",
    responses={404: {"description": "Unknown provider"}},
)
async def activate_provider(
    body: ActivateProviderRequest,
    background_tasks: BackgroundTasks,
    service: AdminBridgeService = Depends(get_admin_bridge_service),
) -> BridgeResponse:
    result = await service.activate_provider(body.provider_id)
    return _respond(result, service, background_tasks)


@router.post(
    "/payments/record",
    response_model=BridgeResponse,
    summary="Record a settled premium payment",
    responses={
        404: {"description": "Unknown quote"},
        409: {"description": "Duplicate providerReference or wrong quote status"},
    },
)
async def record_payment(
    body: RecordPaymentRequest,
    background_tasks: BackgroundTasks,
    service: AdminBridgeService = Depends(get_admin_bridge_service),
) -> BridgeResponse:
    result = await service.record_payment(
        body.quote_id, body.amount, body.payer_identity, body.provider_reference
    )
    return _respond(result, service, background_tasks)
