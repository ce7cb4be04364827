"""Process-lifetime proxy state."""

from .context import ProxyContext

__all__ = ["ProxyContext"]
