"""Failures raised by the external provider adapters.

The checkout orchestrator translates these into API errors; they never
reach a client as-is.
"""


class ProviderError(Exception):
    """An external provider call failed."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}")


class ShippingProviderError(ProviderError):
    """Carrier rate lookup or authentication failed."""


class PaymentProviderError(ProviderError):
    """Card or bitcoin processor call failed or timed out."""
