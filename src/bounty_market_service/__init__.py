"""Bounty market service: task lifecycle and escrow accounting."""

__version__ = "0.1.0"
