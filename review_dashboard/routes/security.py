"""
Webhook Security Module

GitLab authenticates webhooks with a shared secret sent verbatim in the
X-Gitlab-Token header. Each tracked project may carry its own token; when
one is set, requests without the matching header are rejected.
"""

import hmac
from typing import Optional

from fastapi import Request

from review_dashboard.errors import AuthenticationError
from review_dashboard.logging_config import get_logger

logger = get_logger(__name__)

MERGE_REQUEST_EVENT = "Merge Request Hook"

# Actions after which an opened merge request gets an automatic review
REVIEW_ACTIONS = {"open", "reopen", "update"}


def verify_webhook_token(
    expected_token: Optional[str],
    received_token: Optional[str]
) -> bool:
    """
    Check the X-Gitlab-Token header against the project's webhook token.

    Args:
        expected_token: Token stored for the project (None/empty = not required)
        received_token: Value of the X-Gitlab-Token header

    Returns:
        True if the request is accepted

    Raises:
        AuthenticationError: If a token is required and does not match
    """
    if not expected_token:
        return True

    if not received_token:
        logger.warning("Missing webhook token header")
        raise AuthenticationError("Invalid webhook token")

    # Constant-time comparison to prevent timing attacks
    if not hmac.compare_digest(received_token.encode(), expected_token.encode()):
        logger.warning("Webhook token mismatch")
        raise AuthenticationError("Invalid webhook token")

    return True


def is_merge_request_event(event_type: Optional[str]) -> bool:
    """Whether this webhook delivery is a merge request event we process."""
    return event_type == MERGE_REQUEST_EVENT


def should_trigger_review(state: str, action: Optional[str], ai_enabled: bool) -> bool:
    """
    Decide whether a merge request event schedules an automatic review.

    Only opened merge requests of AI-enabled projects are reviewed; events
    without an action (older GitLab versions) count as updates.
    """
    if not ai_enabled or state != "opened":
        return False
    return action is None or action in REVIEW_ACTIONS


def extract_event_uuid(request: Request) -> Optional[str]:
    """Webhook delivery id, useful for logging."""
    return request.headers.get("X-Gitlab-Event-UUID")
