"""
Test suite for tablekeeper.

Unit tests run the refresh engine against an in-memory relation store and
mock the PostgreSQL pool where catalog access is exercised.
"""
