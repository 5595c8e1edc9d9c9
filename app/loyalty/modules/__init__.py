"""
Feature modules live under this package.

Each module owns its models, routes and services, and reuses the platform
pieces (auth, audit, DB session) from app.loyalty.
"""
