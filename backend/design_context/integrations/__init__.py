"""Figma REST integration: client, response cache, rate limiter, URL helpers."""
