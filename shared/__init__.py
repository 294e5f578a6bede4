"""
Shared libraries used by every clinical portal service.
"""
