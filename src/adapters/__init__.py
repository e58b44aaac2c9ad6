"""Adapters package for parley.

Adapters implement the core ports (SQLite persistence) and plug the core
into the outside world (JWT identity, Socket.IO transport).
"""
