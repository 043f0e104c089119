"""biostatus: validator bio-authentication watcher with Telegram notifications."""

__version__ = "0.1.0"
