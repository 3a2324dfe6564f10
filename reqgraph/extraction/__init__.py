"""Requirement extraction: prompts, response parsing, validation and orchestration."""
