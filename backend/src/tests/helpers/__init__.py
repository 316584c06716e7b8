"""Shared helpers for entitlement and billing tests."""
