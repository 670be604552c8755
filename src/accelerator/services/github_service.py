from __future__ import annotations

import logging
from typing import Any

import requests
from github import Github
from github.GithubRetry import GithubRetry

from accelerator.config import settings
from accelerator.models.schemas import Issue

logger = logging.getLogger(__name__)

GRAPHQL_URL = "https://api.github.com/graphql"
USER_AGENT = "Accelerator/1.0.0"


class GraphQLError(RuntimeError):
    """GitHub answered a GraphQL query with errors."""


def _make_github_client(token: str) -> Github:
    """Create a Github client with longer retry backoff for flaky connections."""
    retry = GithubRetry(
        total=6,
        backoff_factor=2,
        backoff_max=60,
    )
    return Github(token, retry=retry, timeout=30, user_agent=USER_AGENT)


class GitHubService:
    def __init__(
        self,
        token: str | None = None,
        github_client: Github | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.token = token if token is not None else settings.github_token
        self.gh = github_client or _make_github_client(self.token)
        self.session = session or requests.Session()

    def _repo(self, repo_full_name: str):
        return self.gh.get_repo(repo_full_name)

    def get_issue(self, repo_name: str, issue_number: int) -> Issue:
        issue = self._repo(repo_name).get_issue(issue_number)
        return Issue(
            number=issue.number,
            title=issue.title,
            body=issue.body or "",
            state=issue.state,
            labels=[l.name for l in issue.labels],
        )

    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> Any:
        """Run a GraphQL query or mutation and return its `data` member."""
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        resp = self.session.post(
            GRAPHQL_URL,
            json=payload,
            headers={
                "Authorization": f"bearer {self.token}",
                "User-Agent": USER_AGENT,
            },
            timeout=30,
        )
        resp.raise_for_status()
        body = resp.json()
        errors = body.get("errors")
        if errors:
            messages = "; ".join(e.get("message", str(e)) for e in errors)
            raise GraphQLError(f"GraphQL query failed: {messages}")
        return body.get("data")
