"""TrustBridge Health authentication and authorization core."""
