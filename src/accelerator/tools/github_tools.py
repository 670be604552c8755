"""GitHub tools backed by a GitHubService."""

from __future__ import annotations

import asyncio

from pydantic import BaseModel, ConfigDict, Field

from accelerator.services.github_service import GitHubService
from accelerator.tools import Tool, make_tool

GRAPHQL_TOOL_NAME = "github_graphql"


class GraphQLArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str = Field(description="The GraphQL query to execute")


def create_github_tools(service: GitHubService) -> list[Tool]:
    async def github_graphql(args: GraphQLArgs):
        return await asyncio.to_thread(service.graphql, args.query)

    return [
        make_tool(
            name=GRAPHQL_TOOL_NAME,
            description="Execute a GraphQL query against the GitHub API",
            args_model=GraphQLArgs,
            execute=github_graphql,
        ),
    ]
