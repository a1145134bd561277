"""
Shared building blocks for the Storefront API Client.

This package contains the exception hierarchy, logging configuration,
data models and abstract interfaces used across the client.
"""
