"""LLM-backed subject and positive-action classification."""
