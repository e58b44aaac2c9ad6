"""Core domain package for parley.

Core contains the connection registry, authorization, event routing, call
signaling and presence logic without any Socket.IO or storage-specific code,
keeping the real-time behavior portable and testable.
"""
