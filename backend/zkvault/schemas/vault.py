from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field

Uint = Union[int, str]  # decimal, hex or JSON number


class CredentialRequest(BaseModel):
    username: str
    password: str


class CredentialResponse(BaseModel):
    credentialHash: str


class RegisterRequest(BaseModel):
    proof: Dict[str, Any]


class PayRequest(BaseModel):
    proof: Dict[str, Any]
    to_username_hash: Uint
    amount: Uint


class WithdrawRequest(BaseModel):
    proof: Dict[str, Any]
    to_user_address: str
    amount: Uint


class RelayResponse(BaseModel):
    bundler_tx_hash: str
    sender: str
    tx_hash: str


class BalanceResponse(BaseModel):
    username: str
    username_hash: str
    balance: str
    token: str


class WalletBalanceResponse(BaseModel):
    address: str
    balance: str
    token: str


class HistoryResponse(BaseModel):
    history: List[Dict[str, Any]]


class WebhookPayload(BaseModel):
    """Chain-data provider delivery: a batch of raw receipt logs, validated one by one."""
    data: List[Any] = Field(default_factory=list)


class WebhookResponse(BaseModel):
    message: str = "Webhook received"
    received: Optional[int] = None
    recorded: Optional[int] = None
    skipped: Optional[int] = None
    failed: Optional[int] = None
