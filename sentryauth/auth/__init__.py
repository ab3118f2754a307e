"""
Sentry OAuth login for the dashboard API.

Design goals:
- Authorization Code flow with a single-use CSRF state per browser session.
- Provider identity reconciled into a local user record (create or update).
- Server-side session bag; the browser cookie only carries a signed session id.
"""
