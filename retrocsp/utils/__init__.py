"""Shared HTML helpers."""
