"""
ID Card Accounts API

Credential and token lifecycle for an ID-card account service.
"""

__version__ = "1.0.0"
