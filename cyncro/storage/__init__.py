"""Persistence: conversations, domain records and uploaded blobs."""
