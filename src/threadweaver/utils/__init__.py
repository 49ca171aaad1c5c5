"""Utility helpers shared across threadweaver."""
