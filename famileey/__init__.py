"""Famileey family network API."""
from famileey.app import create_app

__all__ = ['create_app']
