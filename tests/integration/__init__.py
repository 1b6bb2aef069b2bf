"""
Integration Tests Package for the Parking System

These tests run the ParkingOrchestrator against the SQLAlchemy allocator
and ledger on an in-memory SQLite database.
"""
