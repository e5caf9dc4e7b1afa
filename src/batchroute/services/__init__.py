"""Dispatch core services."""
