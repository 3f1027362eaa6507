# Global runtime state initialized in lifespan
sandbox_available: bool | None = None
