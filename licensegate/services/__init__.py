"""Services for LicenseGate: quota ledger, audit log, plans, notifications."""
