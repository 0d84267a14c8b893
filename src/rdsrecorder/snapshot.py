"""RDS snapshot creation at a scheduled instant."""

import asyncio
from datetime import datetime
from typing import Optional

import structlog

from rdsrecorder.exceptions import RDSError, SnapshotError
from rdsrecorder.interfaces import RDSApi
from rdsrecorder.run import RunHandle
from rdsrecorder.timeutils import current_time
from utils.logging import get_logger

SNAPSHOT_TAGS = {"app": "rdsrecorder"}


def build_snapshot_identifier(run: RunHandle) -> str:
    return f"pgreplay-{run.pid}"


class SnapshotInitiator:
    """Creates an instance or cluster snapshot named after the run."""

    def __init__(
        self,
        api: RDSApi,
        run: RunHandle,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.api = api
        self.run = run
        self.logger = logger or get_logger("snapshot")

    def belongs_to_cluster(self, db_identifier: str) -> Optional[str]:
        """Return the cluster identifier of the instance, if it has one.

        A failed or empty lookup is treated as a standalone instance.
        """
        try:
            instances = self.api.describe_db_instances(db_identifier)
        except RDSError as e:
            self.logger.error("unable to describe the DB", error=str(e))
            return None

        if not instances:
            self.logger.info("database not found", db_identifier=db_identifier)
            return None

        return instances[0].cluster_identifier or None

    def _create(self, db_identifier: str) -> str:
        snapshot_identifier = build_snapshot_identifier(self.run)
        cluster_identifier = self.belongs_to_cluster(db_identifier)

        try:
            if cluster_identifier:
                return self.api.create_db_cluster_snapshot(
                    cluster_identifier, snapshot_identifier, dict(SNAPSHOT_TAGS)
                )
            return self.api.create_db_snapshot(
                db_identifier, snapshot_identifier, dict(SNAPSHOT_TAGS)
            )
        except RDSError as e:
            raise SnapshotError(
                f"unable to create the snapshot: {e.message}",
                correlation_id=self.run.pid,
                context={
                    "db_identifier": db_identifier,
                    "cluster_identifier": cluster_identifier,
                    "snapshot_identifier": snapshot_identifier,
                },
            ) from e

    async def create_db_snapshot(self, db_identifier: str, start_at: datetime) -> Optional[str]:
        """Wait until ``start_at`` and snapshot the database.

        Returns:
            The snapshot ARN, or None if the run was cancelled while waiting

        Raises:
            SnapshotError: If the snapshot call fails
        """
        delay = (start_at - current_time()).total_seconds()
        if delay > 0:
            self.logger.debug("waiting to take the snapshot", seconds=round(delay, 3))
            if await self.run.wait(delay):
                self.logger.info("snapshot cancelled before its start time")
                return None

        arn = await asyncio.to_thread(self._create, db_identifier)
        self.logger.info("the snapshot is created", arn=arn)
        return arn
