"""Unit tests for the Parking System"""
