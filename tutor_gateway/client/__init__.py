"""
Client side of the gateway: session handling, retries and conversations.
"""

from .conversation import Conversation
from .retry import ChatFailure, GatewayCallError, RetryDecision, RetryPolicy
from .secure_client import ChatOutcome, SecureChatClient, SessionState
from .token_cache import SessionTokenCache

__all__ = [
    "ChatFailure",
    "ChatOutcome",
    "Conversation",
    "GatewayCallError",
    "RetryDecision",
    "RetryPolicy",
    "SecureChatClient",
    "SessionState",
    "SessionTokenCache",
]
