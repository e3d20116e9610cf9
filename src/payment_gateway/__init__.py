"""x402 payment gateway: a 402-challenge reverse proxy settled on Solana."""

__version__ = "1.0.0"

SERVICE_NAME = "x402-serverless-payment-gateway"

__all__ = ["SERVICE_NAME", "__version__"]
