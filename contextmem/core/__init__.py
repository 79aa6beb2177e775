"""Engine facade wiring sessions, indexing, retrieval and completion."""
