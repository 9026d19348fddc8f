"""Integration tests: services against an in-memory SQLite unit of work"""
