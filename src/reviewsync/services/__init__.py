"""Backend-facing services: session transport, normalization, serialization."""
