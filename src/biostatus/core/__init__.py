"""Core domain package for biostatus.

Core contains the subscription registry, settings, the per-block notification
engine and its orchestration without any Telegram, chain or storage-specific
code, keeping the business logic portable.
"""
