"""Blueprint chat package."""

from .config import BreakerConfig, ChatConfig, GatewayConfig, RetrievalConfig

__all__ = ["BreakerConfig", "ChatConfig", "GatewayConfig", "RetrievalConfig"]
