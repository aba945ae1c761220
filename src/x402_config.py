"""
x402 configuration

Static settings for the Sei testnet paywall, resolved from environment variables
"""
import os
import re
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Dict, Optional, Union

from pydantic import BaseModel, Field, field_validator

from src.x402_types import X402ConfigurationError

WEATHER_RESOURCE = "/api/weather"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def to_smallest_units(amount: Union[str, Decimal], decimals: int) -> int:
    """
    Convert a human-readable asset amount into the asset's smallest integer unit

    Args:
        amount: Decimal amount (e.g., "0.001")
        decimals: Asset decimal precision (e.g., 6 for USDC)

    Returns:
        Integer amount in smallest units, rounded down
    """
    try:
        value = Decimal(str(amount))
        if not value.is_finite():
            raise X402ConfigurationError(f"Invalid amount: {amount!r}")
        if value < 0:
            raise X402ConfigurationError(f"Amount must not be negative: {amount!r}")
        scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal("1"), rounding=ROUND_DOWN)
    except InvalidOperation as e:
        raise X402ConfigurationError(f"Invalid amount: {amount!r}") from e
    return int(scaled)


class X402Config(BaseModel):
    """Resolved configuration for the x402 paywall on Sei testnet"""

    network: str = Field(default="sei-testnet")
    chain_id: int = Field(default=1328)

    asset_name: str = Field(default="USDC")
    asset_version: str = Field(default="2")
    asset_address: str = Field(default="0x4fCF1784B31630811181f670Aea7A7bEF803eaED")
    asset_decimals: int = Field(default=6, ge=0, le=36)

    recipient_address: str = Field(default="0x9dC2aA0038830c052253161B1EE49B9dD449bD66")
    rpc_url: str = Field(default="https://evm-rpc-testnet.sei-apis.com")
    rpc_timeout_seconds: float = Field(default=10.0, gt=0)

    max_timeout_seconds: int = Field(default=300, gt=0)
    cache_ttl_seconds: Optional[float] = Field(default=3600.0, gt=0)
    cache_max_entries: int = Field(default=10_000, gt=0)
    strict_transfer_check: bool = Field(default=False)

    # Price per protected resource, in the asset's smallest unit
    prices: Dict[str, int] = Field(default_factory=lambda: {WEATHER_RESOURCE: 1000})

    free_mode: bool = Field(default=False)
    base_url: str = Field(default="http://localhost:8000")

    @field_validator("asset_address", "recipient_address")
    @classmethod
    def _ensure_address(cls, value: str) -> str:
        if not _ADDRESS_RE.match(value):
            raise X402ConfigurationError(f"Not a valid 0x-prefixed address: {value!r}")
        return value

    @field_validator("rpc_url", "base_url")
    @classmethod
    def _ensure_http_scheme(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise X402ConfigurationError(f"URL must start with http:// or https://: {value!r}")
        return value.rstrip("/")

    @field_validator("prices")
    @classmethod
    def _ensure_positive_prices(cls, value: Dict[str, int]) -> Dict[str, int]:
        for resource, price in value.items():
            if price <= 0:
                raise X402ConfigurationError(f"Price for {resource} must be positive, got {price}")
        return value

    def price_for(self, resource: str) -> Optional[int]:
        """Price in smallest units for a protected resource, or None if it is free"""
        return self.prices.get(resource)

    @classmethod
    def from_env(cls) -> "X402Config":
        """Load configuration from environment variables, falling back to testnet defaults"""
        defaults = cls.model_fields

        def env(name: str, field: str):
            return os.getenv(name, defaults[field].default)

        asset_decimals = int(env("X402_ASSET_DECIMALS", "asset_decimals"))
        weather_price = os.getenv("X402_WEATHER_PRICE_USDC", "0.001")

        cache_ttl = os.getenv("X402_CACHE_TTL_SECONDS")
        if cache_ttl is None:
            cache_ttl_seconds = defaults["cache_ttl_seconds"].default
        elif cache_ttl.strip().lower() in ("", "none"):
            cache_ttl_seconds = None
        else:
            cache_ttl_seconds = float(cache_ttl)

        return cls(
            network=env("X402_NETWORK", "network"),
            chain_id=int(env("SEI_CHAIN_ID", "chain_id")),
            asset_name=env("X402_ASSET_NAME", "asset_name"),
            asset_version=env("X402_ASSET_VERSION", "asset_version"),
            asset_address=env("X402_ASSET_ADDRESS", "asset_address"),
            asset_decimals=asset_decimals,
            recipient_address=env("X402_RECIPIENT_ADDRESS", "recipient_address"),
            rpc_url=env("SEI_RPC_URL", "rpc_url"),
            rpc_timeout_seconds=float(env("X402_RPC_TIMEOUT_SECONDS", "rpc_timeout_seconds")),
            max_timeout_seconds=int(env("X402_MAX_TIMEOUT_SECONDS", "max_timeout_seconds")),
            cache_ttl_seconds=cache_ttl_seconds,
            cache_max_entries=int(env("X402_CACHE_MAX_ENTRIES", "cache_max_entries")),
            strict_transfer_check=os.getenv("X402_STRICT_TRANSFER_CHECK", "false").lower() == "true",
            prices={WEATHER_RESOURCE: to_smallest_units(weather_price, asset_decimals)},
            free_mode=os.getenv("FREE_MODE", "false").lower() == "true",
            base_url=env("BASE_URL", "base_url"),
        )
