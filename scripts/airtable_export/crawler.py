"""Enterprise crawl: workspaces, their owners and the bases they contain."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from scripts.airtable_export.client import AirtableClient
from scripts.airtable_export.concurrency import map_bounded
from scripts.airtable_export.gateway import PersistenceGateway
from scripts.airtable_export.models import Base, BaseCandidate, CrawlResult, Workspace
from scripts.airtable_export.retry import RetryExecutor

logger = logging.getLogger("export.crawler")


def workspace_owners(detail: dict[str, Any]) -> str:
    """Comma-joined emails of the workspace collaborators with owner permission."""
    collaborators = (detail.get("collaborators") or {}).get("workspaceCollaborators", [])
    return ",".join(
        c["email"]
        for c in collaborators
        if c.get("permissionLevel") == "owner" and c.get("email")
    )


class WorkspaceCrawler:
    """Populate the workspaces and bases tables for each enterprise account.

    Any remote failure propagates and aborts the run.
    """

    def __init__(
        self,
        client: AirtableClient,
        gateway: PersistenceGateway,
        retry: RetryExecutor,
        workspace_concurrency: int = 10,
        base_concurrency: int = 10,
    ) -> None:
        self.client = client
        self.gateway = gateway
        self.retry = retry
        self.workspace_concurrency = workspace_concurrency
        self.base_concurrency = base_concurrency

    async def crawl(self, account_ids: Iterable[str]) -> CrawlResult:
        accounts = users = workspaces = bases = 0
        for account_id in account_ids:
            result = await self.crawl_account(account_id)
            accounts += 1
            users += result.users
            workspaces += result.workspaces
            bases += result.bases
        return CrawlResult(accounts=accounts, users=users, workspaces=workspaces, bases=bases)

    async def crawl_account(self, account_id: str) -> CrawlResult:
        account = await self.retry.run(
            lambda: self.client.get_enterprise_account(account_id), account_id
        )
        user_ids = account.get("userIds", [])
        workspace_ids = account.get("workspaceIds", [])

        logger.info(
            "Fetching %d workspaces for account %s", len(workspace_ids), account_id
        )
        per_workspace = await map_bounded(
            workspace_ids, self._crawl_workspace, self.workspace_concurrency
        )
        queue = [candidate for candidates in per_workspace for candidate in candidates]

        logger.info("Found %d bases, fetching base details", len(queue))
        await map_bounded(queue, self._crawl_base, self.base_concurrency)

        return CrawlResult(
            accounts=1,
            users=len(user_ids),
            workspaces=len(workspace_ids),
            bases=len(queue),
        )

    async def _crawl_workspace(self, workspace_id: str) -> list[BaseCandidate]:
        detail = await self.retry.run(
            lambda: self.client.get_workspace(workspace_id), workspace_id
        )
        await self.gateway.upsert_workspace(
            Workspace(
                id=workspace_id,
                name=detail.get("name"),
                created_time=detail.get("createdTime"),
                owners=workspace_owners(detail),
            )
        )
        return [
            BaseCandidate(workspace_id=workspace_id, base_id=base_id)
            for base_id in detail.get("baseIds", [])
        ]

    async def _crawl_base(self, candidate: BaseCandidate) -> None:
        detail = await self.retry.run(
            lambda: self.client.get_base(candidate.base_id), candidate.base_id
        )
        await self.gateway.upsert_base(
            Base(
                id=candidate.base_id,
                workspace_id=candidate.workspace_id,
                name=detail.get("name"),
                created_time=detail.get("createdTime"),
            )
        )
