from typing import Any, Optional

from loguru import logger
from sqlalchemy import func, update
from sqlmodel import Session, select

from models import Resource, ResourceCategory, ResourceStatus


class ResourceStore:
    """
    Persistence boundary for resources.

    Status changes only go through `compare_and_set`, a single conditional
    UPDATE, so two writers racing on the same row can't both win.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, resource: Resource) -> Resource:
        self.session.add(resource)
        self.session.commit()
        self.session.refresh(resource)
        return resource

    def get(self, resource_id: int) -> Optional[Resource]:
        return self.session.get(Resource, resource_id)

    def compare_and_set(
        self,
        resource_id: int,
        expected_status: ResourceStatus,
        values: dict[str, Any],
        expected_auto_confirm: Optional[bool] = None,
        require_unclaimed: bool = False,
    ) -> bool:
        """
        Apply `values` only if the row still has `expected_status`
        (and the expected auto_confirm flag / no receiver, when asked).
        Returns False when another writer changed the row first.
        """
        stmt = update(Resource).where(
            Resource.id == resource_id,
            Resource.status == expected_status,
        )
        if expected_auto_confirm is not None:
            stmt = stmt.where(Resource.auto_confirm == expected_auto_confirm)
        if require_unclaimed:
            stmt = stmt.where(Resource.receiver_id.is_(None))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        result = self.session.exec(stmt)  # type: ignore[call-overload]
        if result.rowcount != 1:
            self.session.rollback()
            logger.debug(
                "Conditional update lost on resource {} (expected {})",
                resource_id,
                expected_status.value,
            )
            return False

        self.session.commit()
        return True

    def reload(self, resource_id: int) -> Optional[Resource]:
        """Fetch the row from the database, bypassing the identity map."""
        self.session.expire_all()
        return self.session.get(Resource, resource_id)

    def query(
        self,
        status: Optional[ResourceStatus] = None,
        donor_id: Optional[int] = None,
        receiver_id: Optional[int] = None,
        category: Optional[ResourceCategory] = None,
    ) -> list[Resource]:
        query = select(Resource)

        if status is not None:
            query = query.where(Resource.status == status)

        if donor_id is not None:
            query = query.where(Resource.donor_id == donor_id)

        if receiver_id is not None:
            query = query.where(Resource.receiver_id == receiver_id)

        if category is not None:
            query = query.where(Resource.category == category)

        query = query.order_by(Resource.created_at.desc(), Resource.id.desc())
        return list(self.session.exec(query).all())

    def count_by_status(self, donor_id: int) -> dict[ResourceStatus, int]:
        rows = self.session.exec(
            select(Resource.status, func.count(Resource.id))
            .where(Resource.donor_id == donor_id)
            .group_by(Resource.status)
        ).all()
        return {status: count for status, count in rows}
