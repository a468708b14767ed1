"""API Resilience Implementations.

Contains the error classifier, retry with exponential backoff, ordered
model fallback, the shared rate-limit cooldown and its observers.
Bounded Context: API Resilience
"""
