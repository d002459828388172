"""
Lakitu-AI Server Package.

This package contains the web server implementation for the Lakitu-AI agent backend.
It includes the API definition, core configuration, and the service layer that wires
the agent core to persistence.

Subpackages:
    api: FastAPI route definitions and endpoint logic.
    core: Core configurations, constants, and database connections.
    schemas: Pydantic schemas for API request/response validation.
    services: Agent orchestration service and its FastAPI dependency.
"""
