"""Maps GitHub `issues` deliveries to workflow start/stop triggers."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from accelerator.config import settings
from accelerator.models.schemas import TrackingParams

VALID_ACTIONS = ("opened", "reopened", "closed", "labeled", "unlabeled")


class Trigger(BaseModel):
    kind: Literal["start", "stop", "ignore"]
    message: str
    action: str = ""
    params: TrackingParams | None = None
    reason: Literal["closed", "unlabeled"] | None = None


def _label_names(issue: dict[str, Any]) -> list[str]:
    return [l.get("name", "") for l in issue.get("labels") or [] if isinstance(l, dict)]


def _params(payload: dict[str, Any]) -> TrackingParams | None:
    try:
        repository = payload["repository"]
        return TrackingParams(
            owner=repository["owner"]["login"],
            repo=repository["name"],
            issue_number=payload["issue"]["number"],
        )
    except (KeyError, TypeError, ValidationError):
        return None


def route_event(event: str, payload: Any, managed_label: str | None = None) -> Trigger:
    """Decide what a webhook delivery means for tracking. Never raises."""
    label = managed_label or settings.managed_label
    if event != "issues" or not isinstance(payload, dict):
        return Trigger(kind="ignore", message="Event ignored")

    params = _params(payload)
    if params is None:
        return Trigger(kind="ignore", message="Event ignored")

    action = payload.get("action")
    if not isinstance(action, str):
        action = ""
    if action not in VALID_ACTIONS:
        return Trigger(kind="ignore", message="Action ignored", action=action, params=params)

    issue = payload["issue"]
    label_obj = payload.get("label")
    event_label = label_obj.get("name", "") if isinstance(label_obj, dict) else ""

    if action in ("opened", "reopened"):
        if label in _label_names(issue):
            return Trigger(
                kind="start",
                message="New issue tracking workflow started",
                action=action,
                params=params,
            )
        return Trigger(
            kind="ignore",
            message=f"Issue opened or reopened without {label} label",
            action=action,
            params=params,
        )

    if action == "labeled":
        if event_label == label:
            return Trigger(
                kind="start",
                message="Issue tracking workflow started for labeled issue",
                action=action,
                params=params,
            )
        return Trigger(
            kind="ignore",
            message=f"Issue labeled without {label} label",
            action=action,
            params=params,
        )

    if action == "closed":
        return Trigger(
            kind="stop",
            message="Issue closure event sent to workflow",
            action=action,
            params=params,
            reason="closed",
        )

    if event_label == label:
        return Trigger(
            kind="stop",
            message="Issue tracking workflow stopped for unlabeled issue",
            action=action,
            params=params,
            reason="unlabeled",
        )
    return Trigger(
        kind="ignore",
        message="Webhook received and logged",
        action=action,
        params=params,
    )
