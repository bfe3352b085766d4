"""Operator CLI for the auction platform."""
