"""Pure domain layer: clock, value helpers, entities and effects."""
