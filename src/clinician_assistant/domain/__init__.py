"""Domain layer: entities, value objects, ports and errors."""
