"""
api/routes/v1/machines.py -- Machine inventory routes for the RackGuard REST API.

Routes:
  GET    /machines                 -- list machines (?include_hidden=1 for all)
  POST   /machines                 -- create machine
  GET    /machines/{machine_id}    -- machine detail
  DELETE /machines/{machine_id}    -- delete machine

Authentication is done by ApiKeyMiddleware before these handlers run. The
router-level get_principal dependency is a second line of defense: if the
router were ever mounted outside the /api tree, requests would get a 401
instead of reaching the store anonymously.
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import (
    MachineCreate,
    MachineCreatedData,
    MachineCreatedResponse,
    MachineDetailData,
    MachineDetailResponse,
    MachineListData,
    MachineListResponse,
    MachineResponse,
    MessageData,
    MessageResponse,
)
from auth.dependencies import get_principal
from inventory.store import MachineStore

router = APIRouter(dependencies=[Depends(get_principal)])


@router.get("/machines", response_model=MachineListResponse)
def list_machines(request: Request, include_hidden: bool = False) -> MachineListResponse:
    store: MachineStore = request.app.state.inventory
    machines = [MachineResponse.from_machine(m) for m in store.list_machines(include_hidden=include_hidden)]
    return MachineListResponse(data=MachineListData(machines=machines, total=len(machines)))


@router.post("/machines", response_model=MachineCreatedResponse, status_code=201)
def create_machine(request: Request, body: MachineCreate) -> MachineCreatedResponse:
    store: MachineStore = request.app.state.inventory
    machine_id = store.create_machine(body.to_machine())
    return MachineCreatedResponse(data=MachineCreatedData(machine_id=machine_id))


@router.get("/machines/{machine_id}", response_model=MachineDetailResponse)
def get_machine(request: Request, machine_id: int) -> MachineDetailResponse:
    store: MachineStore = request.app.state.inventory
    machine = store.get_machine(machine_id)
    if machine is None:
        raise HTTPException(status_code=404, detail="Machine not found")
    return MachineDetailResponse(data=MachineDetailData(machine=MachineResponse.from_machine(machine)))


@router.delete("/machines/{machine_id}", response_model=MessageResponse)
def delete_machine(request: Request, machine_id: int) -> MessageResponse:
    store: MachineStore = request.app.state.inventory
    if not store.delete_machine(machine_id):
        raise HTTPException(status_code=404, detail="Machine not found")
    return MessageResponse(data=MessageData(message="Machine deleted successfully"))
