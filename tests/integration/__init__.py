"""
Integration tests for the DeFi execution engine.

These tests wire real components together (consensus engine, coordinator,
claim protocol, in-memory store). Tests marked `postgres` additionally
require a running PostgreSQL database.

Run with:
    pytest tests/integration/ -v -m integration

Skip the database-backed ones with:
    pytest -m "not postgres"
"""
