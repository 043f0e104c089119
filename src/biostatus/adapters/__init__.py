"""Adapters binding the core ports to Substrate, SQLite and Telegram."""
