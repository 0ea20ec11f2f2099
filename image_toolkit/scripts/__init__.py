"""One-shot AWS and guest operations used by the build workflow."""
