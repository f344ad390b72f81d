import os

from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Pick up the project id from the web frontend's variable name."""

        super().model_post_init(__context)

        if not self.walletconnect_project_id:
            fallback = os.getenv("NEXT_PUBLIC_WALLETCONNECT_PROJECT_ID")
            if fallback:
                object.__setattr__(self, "walletconnect_project_id", fallback)

    log_level: str = Field(default="INFO", description="Logging level")

    # WalletConnect
    walletconnect_project_id: str = Field(
        default="",
        description="WalletConnect Cloud project id (required to initialize the transport)",
        validation_alias=AliasChoices(
            "walletconnect_project_id",
            "wc_project_id",
            "WALLETCONNECT_PROJECT_ID",
            "WC_PROJECT_ID",
        ),
    )
    app_name: str = Field(default="Lens Account Interface", description="Metadata name shown to dApps")
    app_description: str = Field(
        default="Interface for managing Lens Account via WalletConnect",
        description="Metadata description shown to dApps",
    )
    app_url: str = Field(default="http://localhost:3000", description="Origin URL advertised to dApps")
    app_icons: List[str] = Field(default_factory=lambda: ["/favicon.ico"], description="Metadata icons")
    message_poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="How often each session is polled for inbound relay messages",
    )

    # Chain
    chain_id: int = Field(default=232, description="The single chain sessions are granted on")
    chain_name: str = Field(default="Lens Chain", description="Human readable chain name")
    rpc_url: str = Field(default="https://rpc.lens.xyz", description="JSON-RPC endpoint for reads and receipts")
    http_timeout_seconds: float = Field(default=30.0, description="HTTP timeout for JSON-RPC calls")

    # Owner signer
    owner_signer_url: str = Field(
        default="http://127.0.0.1:8550",
        description="JSON-RPC endpoint holding the owner key (answers eth_sendTransaction)",
    )
    owner_address: Optional[str] = Field(
        default=None,
        description="Owner address; defaults to the first account exposed by the signer",
    )

    # Managed account
    managed_account_address: Optional[str] = Field(
        default=None,
        description="Smart-contract account dApps are connected to",
    )
    global_namespace_address: str = Field(
        default="0x1aA55B9042f08f45825dC4b651B64c9F98Af4615",
        description="Username namespace contract used for account discovery",
    )

    # Bridge behaviour
    auto_approve_sessions: bool = Field(
        default=False,
        description="Approve proposals as soon as they arrive when an account is known",
    )
    notify_superseded_requests: bool = Field(
        default=True,
        description="Answer a superseded request with an error instead of only abandoning it",
    )
    confirmation_timeout_seconds: int = Field(
        default=300,
        ge=1,
        description="Max seconds to wait for a submitted transaction's receipt",
    )
    receipt_poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Interval between receipt polls",
    )
    required_confirmations: int = Field(default=1, ge=1, description="Blocks required to call a receipt final")

    @property
    def app_metadata(self) -> Dict[str, Any]:
        return {
            "name": self.app_name,
            "description": self.app_description,
            "url": self.app_url,
            "icons": list(self.app_icons),
        }

    @property
    def caip2_chain(self) -> str:
        return f"eip155:{self.chain_id}"


# Global settings instance
settings = Settings()
