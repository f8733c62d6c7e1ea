"""Generation task lifecycle, persistence and history."""
