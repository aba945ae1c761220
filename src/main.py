"""
Sei Weather Paywall - x402 micropayment-gated weather API

Weather data released only after an on-chain USDC payment on Sei testnet
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging
import os

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.sei_rpc import SeiRPCClient
from src.x402_challenge import ChallengeIssuer
from src.x402_config import WEATHER_RESOURCE, X402Config
from src.x402_middleware import ProtectedResource, X402Gate, X402Middleware
from src.x402_verifier import LedgerClient, PaymentVerifier

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

RESOURCE_METADATA = {
    WEATHER_RESOURCE: {
        "description": "Get current weather data",
        "mime_type": "application/json",
    },
}


def build_gate(config: X402Config, ledger: LedgerClient) -> X402Gate:
    """Wire issuer, verifier and the protected resource table together"""
    resources = {
        path: ProtectedResource(price=price, **RESOURCE_METADATA.get(path, {}))
        for path, price in config.prices.items()
    }
    return X402Gate(
        issuer=ChallengeIssuer(config),
        verifier=PaymentVerifier(config, ledger),
        resources=resources,
    )


def current_weather(location: str) -> dict:
    """Mock weather observation"""
    return {
        "location": location,
        "temperature": "99°F",
        "conditions": "Sunny",
        "humidity": "45%",
        "windSpeed": "8 mph",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


def create_app(config: Optional[X402Config] = None, ledger: Optional[LedgerClient] = None) -> FastAPI:
    """Build the paywalled API; ``ledger`` defaults to the Sei JSON-RPC client"""
    config = config or X402Config.from_env()
    rpc = None
    if ledger is None:
        rpc = SeiRPCClient(config.rpc_url, timeout=config.rpc_timeout_seconds)
        ledger = rpc

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if rpc is not None:
            await rpc.close()

    app = FastAPI(
        title="Sei Weather Paywall",
        description="Weather data behind x402 micropayments settled in USDC on Sei testnet",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    gate = build_gate(config, ledger)
    app.state.config = config
    app.state.gate = gate

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Payment"],
    )

    # x402 Payment Verification Middleware
    app.add_middleware(X402Middleware, gate=gate, free_mode=config.free_mode)

    if not config.free_mode:
        logger.info(f"x402 payment verification enabled on {config.network}")
    else:
        logger.warning("Running in FREE MODE - no payment verification")

    @app.get("/health")
    async def health():
        """Health check"""
        return {
            "status": "healthy",
            "service": "sei-weather-paywall",
            "version": "1.0.0",
            "network": config.network,
            "free_mode": config.free_mode,
            "protected_resources": sorted(gate.resources),
        }

    @app.get("/.well-known/x402")
    @app.head("/.well-known/x402")
    async def x402_metadata():
        """x402 protocol metadata for service discovery"""
        accepts = []
        for path in sorted(gate.resources):
            accepts.extend(gate.challenge_for(path).accepts)
        metadata = {
            "x402Version": 1,
            "accepts": [option.to_wire() for option in accepts],
        }
        return JSONResponse(content=metadata, status_code=200)

    @app.get(WEATHER_RESOURCE)
    @app.head(WEATHER_RESOURCE)
    async def get_weather(request: Request, location: str = Query("Sei Network", max_length=100)):
        """
        Get current weather data

        Requires an X-Payment proof of a USDC transfer on Sei testnet; the
        accepted verification result is echoed under ``payment``.
        """
        weather = current_weather(location)
        payment = getattr(request.state, "payment", None)
        if payment is not None:
            logger.info(f"Releasing weather data for payment {payment.transaction_id}")
            weather["payment"] = payment.to_wire()
        return weather

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
