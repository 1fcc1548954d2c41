"""
FastAPI routers for organizing API endpoints.

Each router wraps one slice of the sync engine and stays thin: request
parsing and HTTP error translation live here, behaviour lives in
``cloudsync.domain``.
"""
