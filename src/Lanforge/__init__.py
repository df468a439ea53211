"""Lanforge: server bundle import engine for a LAN-party game library host."""
