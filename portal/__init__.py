"""Portal admin API: impersonation sessions and the security audit trail."""
