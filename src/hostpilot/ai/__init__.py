"""AI client, prompts, tools and orchestration."""

from .client import AIClient, ClientSettings

__all__ = ["AIClient", "ClientSettings"]
