import dataclasses

import httpx
import pytest

from pickup_client.client.retry import RETRIED_EXTENSION, RequestAttempt, replay


@pytest.fixture
def request_attempt():
    request = httpx.Request(
        "POST",
        "https://api.example.com/orders?page=2",
        headers={"Authorization": "Bearer A1", "X-Client": "web"},
        json={"address": "Main st. 1"},
        extensions={"timeout": {"connect": 5.0, "read": 5.0, "write": 5.0, "pool": 5.0}},
    )
    return RequestAttempt.from_request(request)


def test_new_attempt_is_not_retried(request_attempt):
    assert request_attempt.retried is False


def test_attempt_is_immutable(request_attempt):
    with pytest.raises(dataclasses.FrozenInstanceError):
        request_attempt.retried = True  # type: ignore[misc]


def test_replay_only_changes_authorization(request_attempt):
    retried = replay(request_attempt, "A2")
    original = request_attempt.request

    assert retried.retried is True
    assert retried.request is not original
    assert retried.request.method == "POST"
    assert retried.request.url == original.url
    assert retried.request.content == original.content
    assert retried.request.headers["Authorization"] == "Bearer A2"
    assert retried.request.headers["X-Client"] == "web"
    assert retried.request.extensions["timeout"] == original.extensions["timeout"]

    # The original attempt is left untouched
    assert original.headers["Authorization"] == "Bearer A1"
    assert request_attempt.retried is False


def test_marker_travels_with_request_metadata(request_attempt):
    retried = replay(request_attempt, "A2")

    assert retried.request.extensions[RETRIED_EXTENSION] is True
    assert RequestAttempt.from_request(retried.request).retried is True
    assert RETRIED_EXTENSION not in request_attempt.request.extensions


def test_replay_adds_authorization_to_anonymous_request():
    attempt = RequestAttempt.from_request(httpx.Request("GET", "https://api.example.com/orders"))

    retried = replay(attempt, "A2")

    assert retried.request.headers["Authorization"] == "Bearer A2"


def test_retried_attempt_cannot_be_replayed_again(request_attempt):
    retried = replay(request_attempt, "A2")

    with pytest.raises(ValueError, match="already been retried"):
        replay(retried, "A3")
