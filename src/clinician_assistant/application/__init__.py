"""Application layer: use cases decoupled from the HTTP transport."""
