"""Configuration objects for the wallet core."""

from dataclasses import dataclass


@dataclass
class WalletsApiConfig:
    """Wallets API (custody backend) configuration."""

    base_url: str = "https://api.unstoppabledomains.com"
    # Formatted with the wallet address
    portfolio_url: str = "https://api.unstoppabledomains.com/profile/user/{address}/wallets"
    timeout_secs: float = 30.0

    @property
    def v1_url(self) -> str:
        """Versioned Wallets API root."""
        return f"{self.base_url.rstrip('/')}/wallet/v1"


@dataclass
class PollingConfig:
    """Bounds for every polling loop in the MPC flows."""

    interval_secs: float = 0.5
    key_ready_attempts: int = 50
    sign_attempts: int = 5
    key_materials_tx_attempts: int = 50
    operation_attempts: int = 120
    confirm_processing_attempts: int = 50
    join_wallet_timeout_secs: float = 60.0

    @classmethod
    def immediate(cls) -> "PollingConfig":
        """Same attempt bounds without waiting between attempts."""
        return cls(interval_secs=0.0, join_wallet_timeout_secs=1.0)


@dataclass
class ServiceConfig:
    """MPC connection service configuration."""

    # Poll interval while another action holds the device
    action_poll_interval_secs: float = 1.0

    @classmethod
    def default(cls) -> "ServiceConfig":
        """Production defaults."""
        return cls()
