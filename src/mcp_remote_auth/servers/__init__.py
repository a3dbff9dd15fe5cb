"""Starlette HTTP surface for the remote OAuth service."""
