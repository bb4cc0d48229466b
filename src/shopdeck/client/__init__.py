"""Authenticated HTTP pipeline.

Learn: Requests flow through three layers:
1. RequestExecutor — one HTTP exchange, classified into payload or typed error
2. RefreshCoordinator — single-flight refresh when the access token expires
3. AuthenticatedClient — the facade the rest of the app calls

Only a 401 carrying code TOKEN_EXPIRED ever reaches the coordinator.
"""
