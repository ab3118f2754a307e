"""Read-only Sentry resource API access for the dashboard."""

from sentryauth.providers.sentry_api import SentryApiClient

__all__ = ["SentryApiClient"]
