"""Buyer lead intake service."""
