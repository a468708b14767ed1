"""Response cache and in-flight request coalescing."""
