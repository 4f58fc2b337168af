"""Concrete collaborators: model client, issue store, tools, config and output."""
