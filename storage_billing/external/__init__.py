"""
External Integrations

Payment provider implementations.
"""
