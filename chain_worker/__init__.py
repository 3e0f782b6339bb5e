"""Resilient submission queue for blockchain operations."""
