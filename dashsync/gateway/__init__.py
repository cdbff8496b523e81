"""Remote store gateways for dashsync.

``SupabaseGateway`` lives in ``dashsync.gateway.supabase``.
"""

from .base import ChangeCallback, RemoteGateway
from .memory import InMemoryGateway

__all__ = ["ChangeCallback", "RemoteGateway", "InMemoryGateway"]
