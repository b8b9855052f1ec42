"""Data models for messages, approvals and provider results."""
