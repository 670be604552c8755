from __future__ import annotations

import hashlib
import hmac
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Header, HTTPException, Request

from accelerator.config import settings, state_path
from accelerator.webhook import route_event
from accelerator.workflows.runner import WorkflowRunner

logger = logging.getLogger(__name__)


def _verify_signature(payload: bytes, signature: str | None) -> None:
    """Verify GitHub webhook X-Hub-Signature-256."""
    secret = settings.github_webhook_secret
    if not secret:
        return
    if not signature:
        raise HTTPException(status_code=401, detail="Missing signature")
    expected = "sha256=" + hmac.new(
        secret.encode(), payload, hashlib.sha256
    ).hexdigest()
    if not hmac.compare_digest(expected, signature):
        raise HTTPException(status_code=401, detail="Invalid signature")


@asynccontextmanager
async def _lifespan(app: FastAPI):
    if app.state.runner is None:
        from accelerator.workflows.store import WorkflowStore

        app.state.runner = WorkflowRunner(WorkflowStore(state_path()))
    app.state.runner.resume_all()
    yield
    await app.state.runner.shutdown()


def create_app(runner: WorkflowRunner | None = None) -> FastAPI:
    app = FastAPI(title="accelerator webhook server", lifespan=_lifespan)
    app.state.runner = runner

    @app.get("/")
    async def root():
        return {
            "message": "Accelerator API is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.post("/webhook/github")
    async def github_webhook(
        request: Request,
        x_hub_signature_256: str | None = Header(None),
        x_github_event: str | None = Header(None),
    ):
        payload_bytes = await request.body()
        _verify_signature(payload_bytes, x_hub_signature_256)

        try:
            payload = json.loads(payload_bytes)
        except ValueError:
            logger.warning("Ignoring delivery with invalid JSON payload")
            return {"message": "Invalid JSON payload ignored"}

        trigger = route_event(x_github_event or "", payload)
        runner: WorkflowRunner = request.app.state.runner
        logger.info(
            "Received event=%s action=%s -> %s", x_github_event, trigger.action or "-", trigger.kind
        )

        if trigger.params is None:
            return {"message": trigger.message}

        body = {
            "message": trigger.message,
            "issueNumber": trigger.params.issue_number,
            "action": trigger.action,
        }
        if trigger.kind == "start":
            instance_id, created = await runner.start(trigger.params)
            body["workflowInstanceId"] = instance_id
            if not created:
                body["message"] = "Issue tracking workflow already running"
        elif trigger.kind == "stop":
            if runner.stop(trigger.params, trigger.reason or trigger.action):
                body["workflowInstanceId"] = trigger.params.instance_id
            else:
                body = {"message": "No active workflow found for this issue"}
        return body

    return app


app = create_app()
