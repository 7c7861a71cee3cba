"""
Network interception for harness-driven pages.

Provides:
- Intercept rules with stub, forced-failure and pass-through resolutions
- URL matching by exact URL, glob or regular expression
- Alias tracking with explicit wait_for synchronization
"""

from playbench.network.interceptor import Exchange, NetworkInterceptor, Transport
from playbench.network.rules import (
    InterceptedRequest,
    InterceptRule,
    ResolutionKind,
    ResponseSpec,
    url_matches,
)

__all__ = [
    "Exchange",
    "InterceptedRequest",
    "InterceptRule",
    "NetworkInterceptor",
    "ResolutionKind",
    "ResponseSpec",
    "Transport",
    "url_matches",
]
