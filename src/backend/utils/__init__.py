"""
Utils Module - Infrastructure Utilities
=======================================

Modules:
    logger: JSON structured logging with rotation
    http_logger: httpx event hooks for request/response logging
    client_factory: httpx.AsyncClient construction with streaming timeouts
    observability: Trace ids and structured agent events
    json_store: Atomic JSON file persistence for the local stores
"""
