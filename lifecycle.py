"""
Resource lifecycle state machine.

    AVAILABLE -> CLAIMED -> IN_TRANSIT -> DELIVERED
    AVAILABLE -> IN_TRANSIT              (claim with auto_confirm)
    AVAILABLE, CLAIMED -> CANCELLED

Every write operation is described by a TransitionRule: the role allowed to
call it, the states it may start from, and the ownership predicate it checks.
The manager evaluates role, ownership, then state against a freshly loaded
record and persists through a conditional update keyed on the prior status.
"""

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import pydantic
from loguru import logger
from sqlmodel import Session

import identity
from errors import (
    NotFound,
    OwnershipViolation,
    RoleViolation,
    StateConflict,
    ValidationError,
    field_errors,
)
from identity import Caller
from models import (
    Resource,
    ResourceCategory,
    ResourceStatus,
    UserRole,
    utcnow,
)
from schemas import DonorStats, ResourceCreate, ResourceRead
from store import ResourceStore


ALLOWED_TRANSITIONS: dict[ResourceStatus, frozenset[ResourceStatus]] = {
    ResourceStatus.AVAILABLE: frozenset(
        {ResourceStatus.CLAIMED, ResourceStatus.IN_TRANSIT, ResourceStatus.CANCELLED}
    ),
    ResourceStatus.CLAIMED: frozenset(
        {ResourceStatus.IN_TRANSIT, ResourceStatus.CANCELLED}
    ),
    ResourceStatus.IN_TRANSIT: frozenset({ResourceStatus.DELIVERED}),
    ResourceStatus.DELIVERED: frozenset(),
    ResourceStatus.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def can_transition(from_status: ResourceStatus, to_status: ResourceStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS[from_status]


# Ownership predicates


def anyone(resource: Resource, caller: Caller) -> bool:
    return True


def is_donor(resource: Resource, caller: Caller) -> bool:
    return resource.donor_id == caller.user_id


def is_receiver(resource: Resource, caller: Caller) -> bool:
    return resource.receiver_id is not None and resource.receiver_id == caller.user_id


@dataclass(frozen=True)
class TransitionRule:
    operation: str
    role: UserRole
    sources: frozenset[ResourceStatus]
    owns: Callable[[Resource, Caller], bool]


CLAIM = TransitionRule(
    "claim", UserRole.RECEIVER, frozenset({ResourceStatus.AVAILABLE}), anyone
)
CONFIRM_PICKUP = TransitionRule(
    "confirm_pickup", UserRole.DONOR, frozenset({ResourceStatus.CLAIMED}), is_donor
)
TOGGLE_AUTO_CONFIRM = TransitionRule(
    "toggle_auto_confirm",
    UserRole.DONOR,
    frozenset({ResourceStatus.AVAILABLE}),
    is_donor,
)
CONFIRM_DELIVERY = TransitionRule(
    "confirm_delivery",
    UserRole.RECEIVER,
    frozenset({ResourceStatus.IN_TRANSIT}),
    is_receiver,
)
CANCEL = TransitionRule(
    "cancel",
    UserRole.DONOR,
    frozenset({ResourceStatus.AVAILABLE, ResourceStatus.CLAIMED}),
    is_donor,
)

RULES = (CLAIM, CONFIRM_PICKUP, TOGGLE_AUTO_CONFIRM, CONFIRM_DELIVERY, CANCEL)


def require_role(caller: Caller, role: UserRole, operation: str) -> None:
    if caller.role != role:
        logger.warning(
            "Role violation: user {} ({}) attempted {}",
            caller.user_id,
            caller.role.value,
            operation,
        )
        raise RoleViolation(f"Only {role.value} users can {operation.replace('_', ' ')}")


class ResourceLifecycleManager:
    """Owns every state change of a donated resource."""

    def __init__(self, session: Session, store: Optional[ResourceStore] = None) -> None:
        self.session = session
        self.store = store or ResourceStore(session)

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def publish(
        self, caller: Caller, fields: ResourceCreate | Mapping[str, Any]
    ) -> ResourceRead:
        require_role(caller, UserRole.DONOR, "publish")

        if not isinstance(fields, ResourceCreate):
            try:
                fields = ResourceCreate.model_validate(fields)
            except pydantic.ValidationError as exc:
                raise ValidationError(
                    "Invalid resource payload",
                    errors=field_errors(exc.errors()),
                ) from exc

        resource = Resource(
            **fields.model_dump(),
            status=ResourceStatus.AVAILABLE,
            auto_confirm=False,
            donor_id=caller.user_id,
            created_at=utcnow(),
        )
        resource = self.store.create(resource)
        logger.info("Resource {} published by donor {}", resource.id, caller.user_id)
        return self._project(resource)

    def list_available(
        self, caller: Caller, category: Optional[ResourceCategory] = None
    ) -> list[ResourceRead]:
        return self._project_all(
            self.store.query(status=ResourceStatus.AVAILABLE, category=category)
        )

    def list_my_donations(self, caller: Caller) -> list[ResourceRead]:
        require_role(caller, UserRole.DONOR, "list donations")
        return self._project_all(self.store.query(donor_id=caller.user_id))

    def list_claimed_by_donor(self, caller: Caller) -> list[ResourceRead]:
        """Donor's resources waiting for a pickup confirmation."""
        require_role(caller, UserRole.DONOR, "list claimed donations")
        return self._project_all(
            self.store.query(donor_id=caller.user_id, status=ResourceStatus.CLAIMED)
        )

    def list_my_received(self, caller: Caller) -> list[ResourceRead]:
        require_role(caller, UserRole.RECEIVER, "list received resources")
        return self._project_all(self.store.query(receiver_id=caller.user_id))

    def get_by_id(self, caller: Caller, resource_id: int) -> ResourceRead:
        return self._project(self._load(resource_id))

    def donor_stats(self, caller: Caller) -> DonorStats:
        require_role(caller, UserRole.DONOR, "view donation stats")
        counts = self.store.count_by_status(caller.user_id)
        by_status = {status: counts.get(status, 0) for status in ResourceStatus}
        return DonorStats(
            donor_id=caller.user_id,
            total=sum(by_status.values()),
            delivered=by_status[ResourceStatus.DELIVERED],
            by_status=by_status,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def claim(self, caller: Caller, resource_id: int) -> ResourceRead:
        resource = self._authorize(CLAIM, caller, resource_id)
        target = (
            ResourceStatus.IN_TRANSIT if resource.auto_confirm else ResourceStatus.CLAIMED
        )
        return self._apply(
            CLAIM,
            caller,
            resource,
            target,
            {"receiver_id": caller.user_id, "claimed_at": utcnow()},
            expected_auto_confirm=resource.auto_confirm,
            require_unclaimed=True,
        )

    def confirm_pickup(self, caller: Caller, resource_id: int) -> ResourceRead:
        resource = self._authorize(CONFIRM_PICKUP, caller, resource_id)
        return self._apply(CONFIRM_PICKUP, caller, resource, ResourceStatus.IN_TRANSIT, {})

    def toggle_auto_confirm(self, caller: Caller, resource_id: int) -> ResourceRead:
        resource = self._authorize(TOGGLE_AUTO_CONFIRM, caller, resource_id)
        return self._apply(
            TOGGLE_AUTO_CONFIRM,
            caller,
            resource,
            resource.status,
            {"auto_confirm": not resource.auto_confirm},
            expected_auto_confirm=resource.auto_confirm,
        )

    def confirm_delivery(self, caller: Caller, resource_id: int) -> ResourceRead:
        resource = self._authorize(CONFIRM_DELIVERY, caller, resource_id)
        return self._apply(
            CONFIRM_DELIVERY,
            caller,
            resource,
            ResourceStatus.DELIVERED,
            {"delivered_at": utcnow()},
        )

    def cancel(self, caller: Caller, resource_id: int) -> ResourceRead:
        resource = self._authorize(CANCEL, caller, resource_id)
        # delivered_at doubles as the terminal timestamp
        return self._apply(
            CANCEL,
            caller,
            resource,
            ResourceStatus.CANCELLED,
            {"delivered_at": utcnow()},
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, resource_id: int) -> Resource:
        resource = self.store.get(resource_id)
        if resource is None:
            raise NotFound(f"Resource {resource_id} not found")
        return resource

    def _authorize(self, rule: TransitionRule, caller: Caller, resource_id: int) -> Resource:
        """Existence, role, ownership, then state. Returns the loaded record."""
        resource = self._load(resource_id)
        require_role(caller, rule.role, rule.operation)

        if not rule.owns(resource, caller):
            logger.warning(
                "Ownership violation: user {} attempted {} on resource {}",
                caller.user_id,
                rule.operation,
                resource_id,
            )
            raise OwnershipViolation(
                f"user {caller.user_id} does not own resource {resource_id} for {rule.operation}"
            )

        if resource.status not in rule.sources:
            raise self._conflict(rule, resource.id, resource.status)
        return resource

    def _apply(
        self,
        rule: TransitionRule,
        caller: Caller,
        resource: Resource,
        target: ResourceStatus,
        values: dict[str, Any],
        expected_auto_confirm: Optional[bool] = None,
        require_unclaimed: bool = False,
    ) -> ResourceRead:
        source = resource.status
        if target != source and not can_transition(source, target):
            raise self._conflict(rule, resource.id, source)

        updated = self.store.compare_and_set(
            resource.id,
            expected_status=source,
            values={**values, "status": target},
            expected_auto_confirm=expected_auto_confirm,
            require_unclaimed=require_unclaimed,
        )
        if not updated:
            current = self.store.reload(resource.id)
            raise self._conflict(rule, resource.id, current.status if current else source)

        resource = self.store.reload(resource.id)
        logger.info(
            "Resource {} {}: {} -> {} by user {}",
            resource.id,
            rule.operation,
            source.value,
            resource.status.value,
            caller.user_id,
        )
        return self._project(resource)

    def _conflict(
        self, rule: TransitionRule, resource_id: int, current: ResourceStatus
    ) -> StateConflict:
        logger.warning(
            "State conflict: {} on resource {} while {}",
            rule.operation,
            resource_id,
            current.value,
        )
        allowed = ", ".join(sorted(status.value for status in rule.sources))
        return StateConflict(
            f"Cannot {rule.operation.replace('_', ' ')} a resource in state "
            f"{current.value} (requires {allowed})",
            current_status=current,
        )

    def _project(
        self, resource: Resource, names: Optional[dict[int, Optional[str]]] = None
    ) -> ResourceRead:
        names = {} if names is None else names

        def name_of(user_id: Optional[int]) -> Optional[str]:
            if user_id is None:
                return None
            if user_id not in names:
                names[user_id] = identity.display_name(self.session, user_id)
            return names[user_id]

        projection = ResourceRead.model_validate(resource, from_attributes=True)
        return projection.model_copy(
            update={
                "donor_name": name_of(resource.donor_id),
                "receiver_name": name_of(resource.receiver_id),
            }
        )

    def _project_all(self, resources: list[Resource]) -> list[ResourceRead]:
        names: dict[int, Optional[str]] = {}
        return [self._project(resource, names) for resource in resources]
