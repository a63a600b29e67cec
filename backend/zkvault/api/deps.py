"""
Service wiring for the HTTP layer.

Collaborators are built lazily on first use from settings so importing the
app never touches the network. Tests replace them through
``app.dependency_overrides``.
"""

import logging
from functools import lru_cache

from zkvault.core.config import settings
from zkvault.infrastructure.blockchain.bundler import BundlerClient
from zkvault.infrastructure.blockchain.event_decoder import EventDecoder
from zkvault.infrastructure.blockchain.relay_pipeline import RelayTransactionPipeline
from zkvault.infrastructure.blockchain.smart_account import SmartAccountFactory
from zkvault.infrastructure.blockchain.web3_service import get_service
from zkvault.infrastructure.ledger.reconciler import LedgerReconciler
from zkvault.infrastructure.ledger.store import LedgerStore, create_store
from zkvault.services.vault_service import VaultService
from zkvault.services.webhook_ingest import WebhookIngestHandler

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_store() -> LedgerStore:
    return create_store(settings.DATABASE_URL)


@lru_cache(maxsize=1)
def get_pipeline() -> RelayTransactionPipeline:
    chain = get_service()
    return RelayTransactionPipeline(
        bundler=BundlerClient(),
        account_factory=SmartAccountFactory(chain),
        chain=chain,
    )


def get_vault_service() -> VaultService:
    return VaultService(store=get_store(), pipeline=get_pipeline(), chain=get_service())


def get_ingest_handler() -> WebhookIngestHandler:
    return WebhookIngestHandler(
        decoder=EventDecoder(),
        reconciler=LedgerReconciler(get_store()),
        chain=get_service(),
    )
