"""
User service: keeps a local projection of user accounts in sync with the
auth service through user.* events.
"""
