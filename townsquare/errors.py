"""Error taxonomy shared by the gateway, memory subsystem, and runner.

Rejected actions are deliberately absent: the external world answers a
dispatch with a boolean, and the decision engine branches on it.
"""

from __future__ import annotations

from typing import Optional


class ConfigurationError(RuntimeError):
    """Raised when a credential or setting is missing or invalid.

    Fatal for the current operation and never retried.
    """


class ProviderError(RuntimeError):
    """Raised when the upstream LLM/embedding provider fails or misbehaves.

    Covers non-success HTTP statuses, transport failures and timeouts, and
    well-formed responses whose payload does not satisfy the contract
    (missing content, wrong number of embeddings, bad indices).
    """

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


__all__ = ["ConfigurationError", "ProviderError"]
