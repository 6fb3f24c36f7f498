"""Snapshot diffing for collections without push support."""
