"""Core data model, error taxonomy and collaborator protocols. No I/O."""
