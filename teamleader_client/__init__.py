"""Resilient client core for the Teamleader Focus API.

Issues requests that survive rate limiting, server errors, connection
drops and expired OAuth2 credentials, and hands callers a closed set of
classified outcomes instead of raw status codes or transport exceptions.
"""

from teamleader_client.orchestrator import ExecutionResult, RequestOrchestrator, RequestSpec

__version__ = "0.1.0"

__all__ = [
    "ExecutionResult",
    "RequestOrchestrator",
    "RequestSpec",
    "__version__",
]
