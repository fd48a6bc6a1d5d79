"""
Front-end session layer.

`SessionClient` owns the current identity + bearer token and talks to the API;
`protected_route` gates views on that state without touching the network.
"""

from portal.client.guard import Redirect, protected_route
from portal.client.session import Anonymous, Authenticated, SessionClient

__all__ = ["Anonymous", "Authenticated", "Redirect", "SessionClient", "protected_route"]
