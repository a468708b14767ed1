"""Domain Layer: value objects, interfaces and events shared by all layers."""
