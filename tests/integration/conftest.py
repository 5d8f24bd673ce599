"""Integration fixtures.

These tests build the real application through the composition root.
Live Redis/PostgreSQL are never contacted.

Usage:
    pytest tests/integration/ -m integration
"""
