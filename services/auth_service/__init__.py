"""
Auth service: credential verification, brute-force lockout, JWT issuance
with refresh-token rotation, and user administration.
"""
