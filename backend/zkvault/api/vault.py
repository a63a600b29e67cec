"""
Vault API — user-facing endpoints and the chain-data webhook.

Usage:
    from zkvault.api.vault import vault_router
    app.include_router(vault_router, prefix=settings.API_PREFIX)
"""

import logging

from fastapi import APIRouter, Depends

from zkvault.schemas.vault import (
    BalanceResponse,
    CredentialRequest,
    CredentialResponse,
    HistoryResponse,
    PayRequest,
    RegisterRequest,
    RelayResponse,
    WalletBalanceResponse,
    WebhookPayload,
    WebhookResponse,
    WithdrawRequest,
)
from zkvault.api.deps import get_ingest_handler, get_vault_service
from zkvault.services.vault_service import VaultService
from zkvault.services.webhook_ingest import WebhookIngestHandler

logger = logging.getLogger(__name__)

vault_router = APIRouter(tags=["Vault"])


@vault_router.get("/")
def hello():
    return {"message": "ZK vault bridge is running"}


# ═══════════════════════════════════════════════════════════════════════════════
# READ ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@vault_router.get("/users/{username}/balance", response_model=BalanceResponse)
def user_balance(username: str, service: VaultService = Depends(get_vault_service)):
    return service.balance(username)


@vault_router.get("/users/{username}/history", response_model=HistoryResponse)
def user_history(username: str, service: VaultService = Depends(get_vault_service)):
    return service.history(username)


@vault_router.get("/wallets/{address}/balance", response_model=WalletBalanceResponse)
def wallet_balance(address: str, service: VaultService = Depends(get_vault_service)):
    return service.wallet_balance(address)


@vault_router.get("/txs/{tx_hash}")
def transaction(tx_hash: str, service: VaultService = Depends(get_vault_service)):
    return service.transaction(tx_hash)


@vault_router.get("/proof/pay", response_model=CredentialResponse)
def credential_hash(req: CredentialRequest, service: VaultService = Depends(get_vault_service)):
    # GET with a JSON body, as the prover client sends it.
    return service.credential(req.username, req.password)


# ═══════════════════════════════════════════════════════════════════════════════
# SPONSORED WRITES
# ═══════════════════════════════════════════════════════════════════════════════

@vault_router.post("/register", response_model=RelayResponse)
def register(req: RegisterRequest, service: VaultService = Depends(get_vault_service)):
    result = service.register(req.proof)
    logger.info(f"[API] register settled — tx={result.tx_hash}")
    return result.to_dict()


@vault_router.post("/pay", response_model=RelayResponse)
def pay(req: PayRequest, service: VaultService = Depends(get_vault_service)):
    result = service.pay(req.proof, req.to_username_hash, req.amount)
    logger.info(f"[API] pay settled — tx={result.tx_hash}")
    return result.to_dict()


@vault_router.post("/withdraw", response_model=RelayResponse)
def withdraw(req: WithdrawRequest, service: VaultService = Depends(get_vault_service)):
    result = service.withdraw(req.proof, req.to_user_address, req.amount)
    logger.info(f"[API] withdraw settled — tx={result.tx_hash}")
    return result.to_dict()


# ═══════════════════════════════════════════════════════════════════════════════
# WEBHOOK
# ═══════════════════════════════════════════════════════════════════════════════

@vault_router.post("/webhooks/quicknode", response_model=WebhookResponse, response_model_exclude_none=True)
def quicknode_webhook(payload: WebhookPayload, handler: WebhookIngestHandler = Depends(get_ingest_handler)):
    report = handler.handle(payload.data)
    return WebhookResponse(
        received=report.received,
        recorded=report.recorded,
        skipped=report.skipped,
        failed=report.failed,
    )
