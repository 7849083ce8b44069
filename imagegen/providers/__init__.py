"""ImageGen providers - Upstream web backends."""
