"""Notification log models."""
