"""Build workflow: persisted phases, pipeline and CLI."""
