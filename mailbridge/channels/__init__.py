"""Inbound channels."""
