"""
Academic Evidence Portfolio Platform
Blueprint registry.
"""

from flask import g


def current_actor():
    """(user_id, role) resolved by the identity middleware."""
    return g.current_user_id, g.current_user_role
