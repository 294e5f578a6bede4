"""
Clinical portal services: auth, user projection and audit trail.
"""
