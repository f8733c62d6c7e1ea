"""Generation engine clients, parameter schemas and operation polling."""
