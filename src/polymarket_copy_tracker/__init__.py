"""Polymarket Copy Tracker - simulated copy-trading of Polymarket traders."""

__version__ = "0.1.0"
