"""API wiring: dependency providers for routes."""
