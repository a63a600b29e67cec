from typing import Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "ZKVAULT-BRIDGE"
    API_PREFIX: str = "/api"

    # Deployment
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    # Chain (Base Sepolia by default)
    RPC_URL: str = "https://sepolia.base.org"
    CHAIN_ID: int = 84532
    VAULT_ADDRESS: str = ""
    USDC_ADDRESS: str = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
    TOKEN_SYMBOL: str = "USDC"
    VAULT_ABI_PATH: Optional[str] = None

    # Account abstraction (ERC-4337 v0.6 + Coinbase Smart Wallet)
    BUNDLER_URL: Optional[str] = None
    PAYMASTER_URL: Optional[str] = None
    ENTRY_POINT_ADDRESS: str = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
    SMART_ACCOUNT_FACTORY_ADDRESS: str = "0x0BA5ED0c6AA8c49038F819E587E2633c4A9F428a"
    PRE_VERIFICATION_GAS_MULTIPLIER: int = 2
    RECEIPT_TIMEOUT_SECONDS: float = 180.0
    RECEIPT_POLL_INTERVAL_SECONDS: float = 1.0
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Postgres ledger (in-memory ledger when unset)
    DATABASE_URL: Optional[str] = None

    # Poseidon parameter override (circomlib JSON export)
    POSEIDON_PARAMS_PATH: Optional[str] = None

    @property
    def bundler_url(self) -> str:
        return self.BUNDLER_URL or self.RPC_URL

    @property
    def paymaster_url(self) -> str:
        return self.PAYMASTER_URL or self.bundler_url

    class Config:
        case_sensitive = True
        env_file = ".env"

settings = Settings()
