"""
Audit service: persists the append-only audit trail and PHI data-access
log from the audit exchange.
"""
