"""Adapters binding the core ports to Matrix, Telegram and SQLite."""
