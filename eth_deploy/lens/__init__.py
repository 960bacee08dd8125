"""Lens protocol deployment."""
