"""Proxy middleware."""
