"""LicenseGate: license entitlement enforcement for connected stores."""
