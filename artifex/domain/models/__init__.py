"""Domain models: value objects, error taxonomy and AI response structures."""
