"""Sentry OAuth login and dashboard API."""
