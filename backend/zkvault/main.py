"""
ZK Vault Bridge — Core API Entry Point.

Settlement bridge between the on-chain USDC vault and the off-chain app.
This module initializes the FastAPI application, configures logging and
error rendering, and mounts the vault endpoints.

Request path:
    1. Proof validation at the boundary (MalformedProof → 400)
    2. Ledger pre-checks (AlreadyRegistered → 400)
    3. RelayTransactionPipeline — sponsored user operation, wait for receipt

Ingestion path:
    webhook batch → EventDecoder → enrichment → LedgerReconciler (upsert)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from zkvault.api.vault import vault_router
from zkvault.core.config import settings
from zkvault.core.crypto.poseidon import load_params_json
from zkvault.core.errors import InvalidRequest, VaultBridgeError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

if settings.POSEIDON_PARAMS_PATH:
    load_params_json(settings.POSEIDON_PARAMS_PATH)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="ZK-authorized vault settlement: sponsored meta-transactions and ledger reconciliation",
    version="0.1.0",
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
)

# --- CORS Configuration ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR RENDERING
# ═══════════════════════════════════════════════════════════════════════════════

@app.exception_handler(VaultBridgeError)
async def vault_error_handler(request: Request, exc: VaultBridgeError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log(f"[API] {request.method} {request.url.path} → {exc.status_code} {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
    error = InvalidRequest(f"Invalid fields: {fields}")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


app.include_router(vault_router, prefix=settings.API_PREFIX)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("zkvault.main:app", host="0.0.0.0", port=settings.PORT)
