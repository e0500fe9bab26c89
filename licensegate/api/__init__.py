"""HTTP API for LicenseGate."""
