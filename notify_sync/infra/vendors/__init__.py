"""Clients for backend REST endpoints."""
