"""
Core application configuration, logging and error types.
"""
