from typing import Annotated, Any, List, Optional

from fastapi import APIRouter, Body, Depends

from db import SessionDep
from lifecycle import ResourceLifecycleManager
from models import ResourceCategory
from schemas import DonorStats, ResourceRead
from .auth import CallerDep

router = APIRouter(tags=["resources"])


def get_manager(session: SessionDep) -> ResourceLifecycleManager:
    return ResourceLifecycleManager(session)


ManagerDep = Annotated[ResourceLifecycleManager, Depends(get_manager)]


@router.post("/", response_model=ResourceRead, status_code=201)
def publish_resource(
    payload: Annotated[dict[str, Any], Body()],
    caller: CallerDep,
    manager: ManagerDep,
):
    """
    Publish a new resource for donation (donors only).
    It starts AVAILABLE with manual pickup confirmation.
    The payload is validated by the manager after the role check.
    """
    return manager.publish(caller, payload)


@router.get("/available", response_model=List[ResourceRead])
def list_available(
    caller: CallerDep,
    manager: ManagerDep,
    category: Optional[ResourceCategory] = None,
):
    """
    List resources that can still be claimed, optionally of one category.
    """
    return manager.list_available(caller, category=category)


@router.get("/categories", response_model=List[ResourceCategory])
def list_categories():
    return list(ResourceCategory)


@router.get("/my-donations", response_model=List[ResourceRead])
def list_my_donations(caller: CallerDep, manager: ManagerDep):
    """
    Everything the current donor has published, in any state.
    """
    return manager.list_my_donations(caller)


@router.get("/donor/claimed", response_model=List[ResourceRead])
def list_claimed_by_donor(caller: CallerDep, manager: ManagerDep):
    """
    The current donor's resources that were claimed and wait for pickup confirmation.
    """
    return manager.list_claimed_by_donor(caller)


@router.get("/donor/stats", response_model=DonorStats)
def donor_stats(caller: CallerDep, manager: ManagerDep):
    return manager.donor_stats(caller)


@router.get("/my-received", response_model=List[ResourceRead])
def list_my_received(caller: CallerDep, manager: ManagerDep):
    """
    Resources claimed by the current receiver (CLAIMED onward).
    """
    return manager.list_my_received(caller)


@router.get("/{resource_id}", response_model=ResourceRead)
def get_resource(resource_id: int, caller: CallerDep, manager: ManagerDep):
    return manager.get_by_id(caller, resource_id)


@router.post("/{resource_id}/claim", response_model=ResourceRead)
def claim_resource(resource_id: int, caller: CallerDep, manager: ManagerDep):
    """
    Claim an available resource (receivers only).
    Goes to IN_TRANSIT right away when the donor enabled auto-confirm,
    otherwise to CLAIMED.
    """
    return manager.claim(caller, resource_id)


@router.put("/{resource_id}/confirm-pickup", response_model=ResourceRead)
def confirm_pickup(resource_id: int, caller: CallerDep, manager: ManagerDep):
    """
    Donor confirms the handoff meeting: CLAIMED -> IN_TRANSIT.
    """
    return manager.confirm_pickup(caller, resource_id)


@router.put("/{resource_id}/toggle-auto-confirm", response_model=ResourceRead)
def toggle_auto_confirm(resource_id: int, caller: CallerDep, manager: ManagerDep):
    """
    Switch between manual and automatic pickup confirmation.
    Only allowed while the resource is AVAILABLE.
    """
    return manager.toggle_auto_confirm(caller, resource_id)


@router.patch("/{resource_id}/deliver", response_model=ResourceRead)
def confirm_delivery(resource_id: int, caller: CallerDep, manager: ManagerDep):
    """
    The claiming receiver confirms delivery: IN_TRANSIT -> DELIVERED.
    """
    return manager.confirm_delivery(caller, resource_id)


@router.delete("/{resource_id}/cancel", response_model=ResourceRead)
def cancel_resource(resource_id: int, caller: CallerDep, manager: ManagerDep):
    """
    Cancel a donation (AVAILABLE or CLAIMED only).
    The record is kept as history, nothing is deleted.
    """
    return manager.cancel(caller, resource_id)
