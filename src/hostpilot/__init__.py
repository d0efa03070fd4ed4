"""HostPilot: a tool-calling agent engine for local language models."""

__version__ = "0.3.0"

__all__ = ["__version__"]
