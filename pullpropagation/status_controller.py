"""Reconciler that copies status reports from managed clusters onto hub Applications."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .client import ConflictError, InMemoryClient, NotFoundError
from .helper import APPLICATION_KIND, get_appset_owner_name

logger = logging.getLogger(__name__)

REPORT_KIND = "MulticlusterApplicationSetReport"
DEFAULT_MAX_RETRIES = 4


@dataclass
class ClusterCondition:
    """Status of one Application on one managed cluster."""

    cluster: str = ""
    app: str = ""
    health_status: str = ""
    sync_status: str = ""
    operation_state_started_at: str = ""
    operation_state_phase: str = ""
    sync_revision: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ClusterCondition:
        """Build a condition from its serialized form."""
        return cls(
            cluster=data.get("cluster", "") or "",
            app=data.get("app", "") or "",
            health_status=data.get("healthStatus", "") or "",
            sync_status=data.get("syncStatus", "") or "",
            operation_state_started_at=data.get("operationStateStartedAt", "") or "",
            operation_state_phase=data.get("operationStatePhase", "") or "",
            sync_revision=data.get("syncRevision", "") or "",
        )


def _set_nested(obj: dict[str, Any], value: Any, *path: str) -> None:
    current = obj
    for index, key in enumerate(path[:-1]):
        child = current.get(key)
        if child is None:
            child = current[key] = {}
        elif not isinstance(child, dict):
            location = ".".join(path[: index + 1])
            raise TypeError(f"value cannot be set because {location} is not a map")
        current = child
    current[path[-1]] = value


def _format_time(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def build_application_status(
    old_status: Mapping[str, Any] | None,
    condition: ClusterCondition,
    app_namespace: str,
    app_name: str,
    appset_name: str,
    now: datetime,
) -> dict[str, Any]:
    """Return a new Application status with the reported values merged into a copy of the old one."""
    status: dict[str, Any] = copy.deepcopy(dict(old_status or {}))

    if condition.health_status:
        _set_nested(status, condition.health_status, "health", "status")

    if condition.sync_status:
        _set_nested(status, condition.sync_status, "sync", "status")

    if condition.operation_state_phase:
        _set_nested(status, condition.operation_state_phase, "operationState", "phase")
        started_at = condition.operation_state_started_at or _format_time(now)
        _set_nested(status, started_at, "operationState", "startedAt")
        # a required field of the Application, left empty
        _set_nested(status, {}, "operationState", "operation")

    if condition.sync_revision:
        _set_nested(status, condition.sync_revision, "sync", "revision")

    if appset_name:
        conditions = status.get("conditions")
        if not isinstance(conditions, list) or not conditions:
            status["conditions"] = [
                {
                    "type": "AdditionalStatusReport",
                    "message": (
                        f"kubectl get multiclusterapplicationsetreports -n {app_namespace} {appset_name}"
                        f"\nAdditional details available in ManagedCluster {condition.cluster}"
                        f"\nkubectl get applications -n {app_namespace} {app_name}"
                    ),
                }
            ]

    return status


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ApplicationStatusReconciler:
    """Populates Application status from a MulticlusterApplicationSetReport."""

    def __init__(
        self,
        client: InMemoryClient,
        clock: Callable[[], datetime] = _utc_now,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.client = client
        self.clock = clock
        self.max_retries = max_retries

    def _update_with_retry(self, obj: dict[str, Any]) -> dict[str, Any]:
        for attempt in range(1, self.max_retries + 1):
            try:
                return self.client.update(obj)
            except ConflictError:
                if attempt == self.max_retries:
                    raise
                logger.info("conflict updating Application, retrying (%d)", attempt)
        raise AssertionError("unreachable")

    def reconcile(self, namespace: str, name: str) -> None:
        """Apply every cluster condition of the named report to its Application."""
        logger.info("reconciling Application for status update")
        try:
            report = self.client.get(REPORT_KIND, namespace, name)
        except NotFoundError:
            logger.info("MulticlusterApplicationSetReport %s/%s not found", namespace, name)
            return

        if (report.get("metadata") or {}).get("deletionTimestamp"):
            return

        raw_conditions = (report.get("statuses") or {}).get("clusterConditions") or []
        for raw in raw_conditions:
            self._apply(ClusterCondition.from_dict(raw))

        logger.info("done reconciling Application for status update")

    def _apply(self, condition: ClusterCondition) -> None:
        parts = condition.app.split("/")
        if len(parts) < 2:
            return
        app_namespace, app_name = parts[0], parts[1]

        try:
            application = self.client.get(APPLICATION_KIND, app_namespace, app_name)
        except NotFoundError as err:
            logger.info("not found Application %s", err)
            return

        raw_status = application.get("status")
        old_status = copy.deepcopy(raw_status) if isinstance(raw_status, dict) else {}

        if condition.health_status == "Healthy":
            # pass through Progressing first so the ApplicationSet controller sees the transition
            _set_nested(application, "Progressing", "status", "health", "status")
            logger.info("updating Application health status to Progressing")
            application = self._update_with_retry(application)

        appset_name = get_appset_owner_name((application.get("metadata") or {}).get("ownerReferences"))
        new_status = build_application_status(
            old_status, condition, app_namespace, app_name, appset_name, self.clock()
        )

        if new_status != old_status:
            application["status"] = new_status
            self._update_with_retry(application)