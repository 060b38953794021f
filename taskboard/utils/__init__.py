"""Shared helpers: API error envelope and crypto."""
