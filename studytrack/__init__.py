"""studytrack: learning-session lifecycle, derived metrics and retention cleanup."""
