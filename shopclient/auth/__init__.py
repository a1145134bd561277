"""
Authentication package for the Storefront API Client.

This package contains durable token storage, the in-process credential
store, and the single-flight refresh coordinator.
"""
