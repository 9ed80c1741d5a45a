"""Provider implementations."""

from proposal_engine.ai.providers.openrouter import HttpxUpstreamStream, OpenRouterTransport, UpstreamRequest, UpstreamStream, UpstreamTransport

__all__ = ["HttpxUpstreamStream", "OpenRouterTransport", "UpstreamRequest", "UpstreamStream", "UpstreamTransport"]
