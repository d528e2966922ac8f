"""Reconciliation of the container immutability policy.

The policy moves through three states: absent, unlocked and locked. Absent and
unlocked policies follow the desired configuration freely. Once a policy is
locked it is a one-way ratchet: its retention period can only be extended, and
it can never be unlocked, shortened or deleted. Desired configurations that
would weaken a locked policy are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from .. import metrics
from ..models import BucketRequest, ImmutabilityConfig, ObservedImmutabilityPolicy
from ..services.cloud.base import CloudResourceClient
from ..utils.errors import InvalidConfigurationError
from .provisioner import storage_account_name

logger = logging.getLogger(__name__)


class ImmutabilityAction(str, Enum):
    """Action needed to move the observed policy towards the desired one."""

    NONE = "none"
    CREATE = "create"
    CREATE_AND_LOCK = "create_and_lock"
    UPDATE = "update"
    UPDATE_AND_LOCK = "update_and_lock"
    LOCK = "lock"
    EXTEND = "extend"
    DELETE = "delete"


@dataclass(frozen=True)
class ImmutabilityPlan:
    action: ImmutabilityAction
    days: int = 0


def retention_days(retention_period: timedelta) -> int:
    """Convert a retention period to whole days, truncating toward zero."""
    return int(retention_period.total_seconds() / 3600 / 24)


def plan_immutability(
    observed: ObservedImmutabilityPolicy,
    desired: ImmutabilityConfig | None,
) -> ImmutabilityPlan:
    """Compute the action that reconciles the observed policy toward the desired one.

    Raises:
        InvalidConfigurationError: If the desired retention is shorter than one day
    """
    if desired is None:
        if observed.present and not observed.locked:
            return ImmutabilityPlan(ImmutabilityAction.DELETE)
        return ImmutabilityPlan(ImmutabilityAction.NONE)

    days = retention_days(desired.retention_period)
    if days < 1:
        raise InvalidConfigurationError(
            f"immutability retention period {desired.retention_period} is shorter than one day"
        )

    if not observed.present:
        if desired.locked:
            return ImmutabilityPlan(ImmutabilityAction.CREATE_AND_LOCK, days)
        return ImmutabilityPlan(ImmutabilityAction.CREATE, days)

    if observed.locked:
        # Locked policies only ever grow.
        if days > observed.retention_days:
            return ImmutabilityPlan(ImmutabilityAction.EXTEND, days)
        return ImmutabilityPlan(ImmutabilityAction.NONE, observed.retention_days)

    if desired.locked:
        if days != observed.retention_days:
            return ImmutabilityPlan(ImmutabilityAction.UPDATE_AND_LOCK, days)
        return ImmutabilityPlan(ImmutabilityAction.LOCK, days)

    if days != observed.retention_days:
        return ImmutabilityPlan(ImmutabilityAction.UPDATE, days)
    return ImmutabilityPlan(ImmutabilityAction.NONE, days)


class ImmutabilityPolicyEngine:
    """Applies immutability plans against the cloud."""

    def __init__(self, cloud: CloudResourceClient):
        self.cloud = cloud

    def fetch(self, request: BucketRequest) -> ObservedImmutabilityPolicy:
        """Fetch the current policy of the bucket's container."""
        return self.cloud.get_immutability_policy(request.name, storage_account_name(request.name), request.name)

    def reconcile(self, request: BucketRequest, observed: ObservedImmutabilityPolicy) -> ImmutabilityPlan:
        """Drive the container policy toward ``request.immutability``.

        Returns:
            The plan that was applied
        """
        plan = plan_immutability(observed, request.immutability)
        if plan.action == ImmutabilityAction.NONE:
            if observed.locked and request.immutability is not None and plan.days > retention_days(
                request.immutability.retention_period
            ):
                logger.warning(
                    f"Ignoring desired retention for bucket {request.name}: locked policy keeps "
                    f"{observed.retention_days} days"
                )
            return plan

        logger.info(
            f"Immutability policy of bucket {request.name}: {plan.action.value} "
            f"(observed days={observed.retention_days} locked={observed.locked}, desired days={plan.days})"
        )
        try:
            self._apply(request, observed, plan)
        except Exception:
            metrics.immutability_operations_total.labels(action=plan.action.value, result="failed").inc()
            raise
        metrics.immutability_operations_total.labels(action=plan.action.value, result="success").inc()
        return plan

    def _apply(self, request: BucketRequest, observed: ObservedImmutabilityPolicy, plan: ImmutabilityPlan) -> None:
        group = request.name
        account = storage_account_name(request.name)
        container = request.name
        action = plan.action

        if action == ImmutabilityAction.DELETE:
            self.cloud.delete_immutability_policy(group, account, container, observed.etag)
            return

        if action == ImmutabilityAction.EXTEND:
            self.cloud.extend_immutability_policy(group, account, container, plan.days, observed.etag)
            return

        etag = observed.etag
        if action in (
            ImmutabilityAction.CREATE,
            ImmutabilityAction.CREATE_AND_LOCK,
            ImmutabilityAction.UPDATE,
            ImmutabilityAction.UPDATE_AND_LOCK,
        ):
            etag = self.cloud.create_or_update_immutability_policy(group, account, container, plan.days, observed.etag)

        if action in (ImmutabilityAction.CREATE, ImmutabilityAction.UPDATE):
            return

        if action != ImmutabilityAction.LOCK:
            # A lock carrying the pre-update etag is rejected as stale.
            refreshed = self.cloud.get_immutability_policy(group, account, container)
            etag = refreshed.etag or etag

        self.cloud.lock_immutability_policy(group, account, container, etag)
        logger.info(f"Locked immutability policy of bucket {request.name} at {plan.days} days")
