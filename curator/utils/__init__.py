"""Utility helpers for the curator service."""
