"""
External service adapters.
"""
