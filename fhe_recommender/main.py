"""
Wiring for the recommender client core.

The embedding client supplies the registry contract binding and the FHE
backend; everything else is assembled here.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from fhe_recommender.config import settings
from fhe_recommender.infrastructure.observability.logging import get_logger, setup_logging
from fhe_recommender.repositories.content_registry import ContentRegistryClient, RegistryContract
from fhe_recommender.services.infrastructure.decryption_gateway import DecryptionGateway
from fhe_recommender.services.infrastructure.encryption_gateway import EncryptionGateway
from fhe_recommender.services.infrastructure.relayer_client import (
    FheBackend,
    FheRuntime,
    RelayerClient,
)
from fhe_recommender.services.lifecycle_service import LifecycleService
from fhe_recommender.services.session_orchestrator import SessionOrchestrator
from fhe_recommender.services.status_channel import StatusChannel

logger = get_logger(__name__)


def build_session(
    contract: RegistryContract,
    backend: FheBackend,
    *,
    relayer: RelayerClient | None = None,
    status: StatusChannel | None = None,
) -> SessionOrchestrator:
    """Assemble the runtime, gateways, registry client, and orchestrator."""
    runtime = FheRuntime(relayer or RelayerClient(), backend)
    registry = ContentRegistryClient(contract)
    lifecycle = LifecycleService(
        registry,
        DecryptionGateway(runtime),
        contract_address=settings.CONTRACT_ADDRESS,
    )
    return SessionOrchestrator(
        runtime,
        registry,
        lifecycle,
        EncryptionGateway(runtime),
        status=status,
    )


@asynccontextmanager
async def recommender_session(
    contract: RegistryContract,
    backend: FheBackend,
    *,
    relayer_transport: httpx.AsyncBaseTransport | None = None,
    configure_logging: bool = True,
) -> AsyncIterator[SessionOrchestrator]:
    """Build a session and close the relayer client when the caller is done."""
    if configure_logging:
        setup_logging(log_level=settings.LOG_LEVEL)

    relayer = RelayerClient(transport=relayer_transport)
    session = build_session(contract, backend, relayer=relayer)
    logger.info("Recommender session started", environment=settings.environment)
    try:
        yield session
    finally:
        session.close_item()
        session.status.clear()
        try:
            await relayer.close()
        except Exception as e:
            logger.error("Error closing relayer client", error=str(e))
        logger.info("Recommender session closed")
