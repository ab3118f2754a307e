from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from sentryauth.auth.errors import NetworkError, ResourceApiError
from sentryauth.providers.sentry_api import SentryApiClient


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def api(http) -> SentryApiClient:
    return SentryApiClient("https://sentry.example.com/", http=http)


def test_request_targets_api_root(api, http, make_response) -> None:
    http.get.return_value = make_response(200, [{"slug": "web"}])

    assert api.get_projects("acme", "tok") == [{"slug": "web"}]
    args, kwargs = http.get.call_args
    assert args[0] == "https://sentry.example.com/api/0/organizations/acme/projects/"
    assert kwargs["headers"]["Authorization"] == "Bearer tok"


def test_issue_params_are_clamped_and_defaulted(api, http, make_response) -> None:
    http.get.return_value = make_response(200, [])

    api.get_issues("acme", "tok", limit=0)
    assert http.get.call_args.kwargs["params"]["limit"] == 100

    api.get_issues("acme", "tok", limit=250, project_id="42")
    params = http.get.call_args.kwargs["params"]
    assert params["limit"] == 100
    assert params["project"] == "42"
    assert params["sort"] == "date"


def test_replays_unwrap_envelope(api, http, make_response) -> None:
    http.get.return_value = make_response(200, {"data": [{"id": "r1"}]})
    assert api.get_replays("acme", "tok") == [{"id": "r1"}]

    http.get.return_value = make_response(200, [{"id": "r2"}])
    assert api.get_replays("acme", "tok", project_slug="web") == [{"id": "r2"}]
    assert http.get.call_args.kwargs["params"]["projectSlug"] == "web"

    http.get.return_value = make_response(200, {"unexpected": True})
    assert api.get_replays("acme", "tok") == []


@pytest.mark.parametrize("status", [401, 403, 404, 500])
def test_error_statuses_raise(api, http, make_response, status) -> None:
    http.get.return_value = make_response(status, text="err")
    with pytest.raises(ResourceApiError) as exc:
        api.get_projects("acme", "tok")
    assert exc.value.status == status


def test_transport_error_raises_network_error(api, http) -> None:
    http.get.side_effect = requests.ConnectionError("refused")
    with pytest.raises(NetworkError):
        api.get_members("acme", "tok")


def test_alert_rules_path(api, http, make_response) -> None:
    http.get.return_value = make_response(200, [])
    api.get_alert_rules("acme", "tok")
    assert http.get.call_args.args[0].endswith("/api/0/organizations/acme/alert-rules/")
