"""API route modules, mounted under /api/v1 by licensegate.main."""
