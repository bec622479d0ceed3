"""Abstract base classes for the upstream transport."""

from abc import ABC, abstractmethod

from overlay_proxy.shared.models import OutboundRequest, UpstreamResponse


class UpstreamError(Exception):
    """The outbound call failed before an upstream response was read."""


class UpstreamTransport(ABC):
    """Abstract interface for issuing the single outbound call."""

    @abstractmethod
    async def send(self, request: OutboundRequest) -> UpstreamResponse:
        """
        Send a request to the upstream and read its full response.

        Args:
            request: Request to forward

        Returns:
            Response from the upstream

        Raises:
            TimeoutError: If a configured timeout expires
            UpstreamError: For connection and protocol failures
        """
        pass
