"""
Read-only Sentry resource API client used by the dashboard proxy routes.

Calls are made with the user's OAuth access token. Token refresh is not handled:
an expired token surfaces as a 401 `ResourceApiError` and the user logs in again.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from sentryauth.auth.errors import NetworkError, ResourceApiError

logger = logging.getLogger(__name__)

# Sentry caps page size at 100.
MAX_PAGE_SIZE = 100


class SentryApiClient:
    """
    Thin wrapper over `{base_url}/api/0`.

    One instance is shared by all requests; the access token is passed per call.
    """

    def __init__(self, base_url: str, *, timeout: float = 10.0, http: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = http if http is not None else requests.Session()

    def _make_request(self, endpoint: str, access_token: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET an API endpoint and return the decoded JSON body.

        Raises:
            ResourceApiError on non-2xx responses
            NetworkError on transport failures
        """
        url = f"{self.base_url}/api/0{endpoint}"
        logger.debug("Sentry API request: %s params=%s", url, params)
        try:
            r = self._http.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(f"Sentry API request to {endpoint} failed: {e}") from e

        if not r.ok:
            logger.warning("Sentry API error: %s %s body=%s", r.status_code, url, (r.text or "")[:200])
            if r.status_code == 401:
                raise ResourceApiError(401, "Authentication failed - check access token and scopes")
            if r.status_code == 403:
                raise ResourceApiError(403, f"Permission denied - insufficient scopes for {endpoint}")
            if r.status_code == 404:
                raise ResourceApiError(404, "Resource not found - check organization slug and endpoint")
            raise ResourceApiError(r.status_code, f"Sentry API error: {r.status_code}")

        try:
            return r.json()
        except ValueError as e:
            raise ResourceApiError(r.status_code, f"Invalid JSON from Sentry for {endpoint}") from e

    def get_organizations(self, access_token: str) -> List[Dict[str, Any]]:
        return self._make_request("/organizations/", access_token)

    def get_projects(self, org_slug: str, access_token: str) -> List[Dict[str, Any]]:
        return self._make_request(f"/organizations/{org_slug}/projects/", access_token)

    def get_members(self, org_slug: str, access_token: str) -> List[Dict[str, Any]]:
        return self._make_request(f"/organizations/{org_slug}/members/", access_token)

    def get_issues(
        self,
        org_slug: str,
        access_token: str,
        *,
        stats_period: str = "14d",
        limit: int = MAX_PAGE_SIZE,
        sort: str = "date",
        query: str = "",
        project_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        List organization issues. An empty query returns all issues, not only unresolved ones;
        project `-1` means every project.
        """
        params = {
            "statsPeriod": stats_period or "14d",
            "limit": max(1, min(int(limit or MAX_PAGE_SIZE), MAX_PAGE_SIZE)),
            "sort": sort or "date",
            "query": query,
            "project": project_id or "-1",
        }
        return self._make_request(f"/organizations/{org_slug}/issues/", access_token, params=params)

    def get_alert_rules(self, org_slug: str, access_token: str) -> List[Dict[str, Any]]:
        return self._make_request(f"/organizations/{org_slug}/alert-rules/", access_token)

    def get_replays(
        self,
        org_slug: str,
        access_token: str,
        *,
        stats_period: str = "14d",
        limit: int = MAX_PAGE_SIZE,
        sort: str = "-started_at",
        project_slug: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "statsPeriod": stats_period or "14d",
            "per_page": max(1, min(int(limit or MAX_PAGE_SIZE), MAX_PAGE_SIZE)),
            "sort": sort or "-started_at",
        }
        if project_slug:
            params["projectSlug"] = project_slug
        data = self._make_request(f"/organizations/{org_slug}/replays/", access_token, params=params)

        # The replays endpoint may wrap the list in an envelope.
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ("data", "results"):
                if isinstance(data.get(key), list):
                    return data[key]
            logger.info("Replays response has no list payload (keys=%s)", sorted(data.keys()))
        return []
