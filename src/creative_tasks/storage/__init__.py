"""Relational persistence for generation tasks and their files."""
