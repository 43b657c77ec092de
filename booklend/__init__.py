"""Peer-to-peer book lending for a campus community."""

from .app import create_app

__all__ = ['create_app']
