"""Async GitHub REST and GraphQL client for issue and comment updates."""

from __future__ import annotations

import httpx

from text_vector_embeddings.config import bot_settings

ISSUE_NODE_QUERY = """
query ($nodeId: ID!) {
  node(id: $nodeId) {
    ... on Issue {
      title
      url
      number
      body
      state
      stateReason
      assignees(first: 10) { nodes { login } }
      repository { name owner { login } }
    }
    ... on PullRequest {
      title
      url
      number
      body
      state
      assignees(first: 10) { nodes { login } }
      repository { name owner { login } }
    }
  }
}
"""

COMMENT_NODE_QUERY = """
query ($nodeId: ID!) {
  node(id: $nodeId) {
    ... on IssueComment {
      body
      url
      issue {
        number
        repository { name owner { login } }
      }
    }
    ... on PullRequestReviewComment {
      body
      url
      pullRequest {
        number
        repository { name owner { login } }
      }
    }
    ... on PullRequestReview {
      body
      url
      pullRequest {
        number
        repository { name owner { login } }
      }
    }
  }
}
"""


class GraphQLError(Exception):
    """Raised when a GraphQL response carries errors."""


class GitHubClient:
    """Async context manager wrapping httpx.AsyncClient for GitHub API."""

    def __init__(
        self,
        token: str = "",
        api_url: str = "",
        rate_limit_buffer: int = 0,
    ):
        self.token = token or bot_settings.github_token
        self.api_url = (api_url or bot_settings.github_api_url).rstrip("/")
        self.rate_limit_buffer = rate_limit_buffer or bot_settings.rate_limit_buffer
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> GitHubClient:
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            timeout=30.0,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("GitHubClient must be used as async context manager")
        return self._client

    async def _check_remaining(self, resp: httpx.Response) -> None:
        """Raise if rate limit remaining is below buffer."""
        remaining = int(resp.headers.get("x-ratelimit-remaining", "999"))
        if remaining < self.rate_limit_buffer:
            raise httpx.HTTPStatusError(
                f"Rate limit low: {remaining} remaining (buffer={self.rate_limit_buffer})",
                request=resp.request,
                response=resp,
            )

    async def _paginate(self, url: str, params: dict | None = None) -> list[dict]:
        """Follow Link header pagination to collect all pages."""
        results: list[dict] = []
        next_url: str | None = url
        current_params = params

        while next_url:
            resp = await self.client.get(next_url, params=current_params)
            resp.raise_for_status()
            await self._check_remaining(resp)

            data = resp.json()
            if isinstance(data, list):
                results.extend(data)
            else:
                results.append(data)

            link_header = resp.headers.get("link", "")
            next_url = None
            current_params = None  # params are embedded in the Link URL
            for part in link_header.split(","):
                if 'rel="next"' in part:
                    next_url = part.split(";")[0].strip().strip("<>")
                    break

        return results

    # --- Repositories ---

    async def get_repository(self, owner: str, repo: str) -> dict:
        resp = await self.client.get(f"/repos/{owner}/{repo}")
        resp.raise_for_status()
        await self._check_remaining(resp)
        return resp.json()

    # --- Issues ---

    async def list_repository_issues(self, owner: str, repo: str, state: str = "open") -> list[dict]:
        """List a repository's issues (paginated). Pull requests are included, as GitHub returns them."""
        return await self._paginate(
            f"/repos/{owner}/{repo}/issues",
            params={"state": state, "per_page": "100"},
        )

    async def get_issue(self, owner: str, repo: str, number: int) -> dict:
        """Fetch a single issue."""
        resp = await self.client.get(f"/repos/{owner}/{repo}/issues/{number}")
        resp.raise_for_status()
        await self._check_remaining(resp)
        return resp.json()

    async def update_issue(
        self,
        owner: str,
        repo: str,
        number: int,
        body: str | None = None,
        state: str | None = None,
        state_reason: str | None = None,
    ) -> dict:
        """Patch an issue's body and/or state. Only the given fields are sent."""
        data: dict[str, str] = {}
        if body is not None:
            data["body"] = body
        if state is not None:
            data["state"] = state
        if state_reason is not None:
            data["state_reason"] = state_reason

        resp = await self.client.patch(f"/repos/{owner}/{repo}/issues/{number}", json=data)
        resp.raise_for_status()
        return resp.json()

    # --- Comments ---

    async def list_issue_comments(self, owner: str, repo: str, number: int) -> list[dict]:
        """List comments on an issue (paginated)."""
        return await self._paginate(
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            params={"per_page": "100"},
        )

    async def get_comment(self, owner: str, repo: str, comment_id: int) -> dict | None:
        """Fetch an issue comment. Returns None if it doesn't exist (404)."""
        resp = await self.client.get(f"/repos/{owner}/{repo}/issues/comments/{comment_id}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def create_comment(self, owner: str, repo: str, number: int, body: str) -> dict:
        resp = await self.client.post(
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            json={"body": body},
        )
        resp.raise_for_status()
        return resp.json()

    async def update_comment(self, owner: str, repo: str, comment_id: int, body: str) -> dict:
        resp = await self.client.patch(
            f"/repos/{owner}/{repo}/issues/comments/{comment_id}",
            json={"body": body},
        )
        resp.raise_for_status()
        return resp.json()

    async def delete_comment(self, owner: str, repo: str, comment_id: int) -> None:
        resp = await self.client.delete(f"/repos/{owner}/{repo}/issues/comments/{comment_id}")
        resp.raise_for_status()

    # --- GraphQL ---

    async def graphql(self, query: str, variables: dict | None = None) -> dict:
        """Run a GraphQL query and return its `data` object."""
        resp = await self.client.post("/graphql", json={"query": query, "variables": variables or {}})
        resp.raise_for_status()
        payload = resp.json()
        if payload.get("errors"):
            raise GraphQLError("; ".join(e.get("message", "") for e in payload["errors"]))
        return payload.get("data") or {}

    async def get_issue_node(self, node_id: str) -> dict | None:
        """Resolve an issue or pull request node id. Returns None if the node is gone."""
        data = await self.graphql(ISSUE_NODE_QUERY, {"nodeId": node_id})
        node = data.get("node")
        return node or None

    async def get_comment_node(self, node_id: str) -> dict | None:
        """Resolve a comment or review node id. Returns None if the node is gone."""
        data = await self.graphql(COMMENT_NODE_QUERY, {"nodeId": node_id})
        node = data.get("node")
        return node or None
