from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..core.bridge.models import FactKind
from ..core.bridge.runtime import BridgeRuntime
from ..core.recovery.errors import RecoverableError, UnrecoverableError
from .deps import get_runtime, raise_http_error, verify_admin_key

router = APIRouter(prefix="/bridge")

BridgeError = (RecoverableError, UnrecoverableError)


class ResolveForceReceiveRequest(BaseModel):
    user: str = Field(..., description="User whose force receive is being resolved")
    approve: bool = Field(..., description="Approve (refund the user) or reject (leave pending)")


def _serialize(result: Any) -> Any:
    if hasattr(result, "to_dict"):
        return result.to_dict()
    return result


@router.get("/chains")
async def list_chains(runtime: BridgeRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    return {"chains": [chain.to_dict() for chain in runtime.registry.chains()]}


@router.get("/requests/{user}")
async def get_request(user: str, runtime: BridgeRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    try:
        request = runtime.ledger.get(user)
        status = runtime.ledger.status(user)
        history = runtime.ledger.history(user)
    except BridgeError as exc:
        raise_http_error(exc)
    return {
        "user": user.lower(),
        "status": status.value,
        "request": request.to_dict() if request else None,
        "history": [t.to_dict() for t in history],
    }


@router.get("/agents/{address}")
async def get_agent(address: str, runtime: BridgeRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    try:
        agent = runtime.agents.get(address)
    except BridgeError as exc:
        raise_http_error(exc)
    return {"agent": agent.to_dict()}


@router.get("/stalled")
async def list_stalled(runtime: BridgeRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    try:
        users = await runtime.coordinator.stalled_users()
    except BridgeError as exc:
        raise_http_error(exc)
    return {"users": users, "stallTimeoutBlocks": runtime.arbiter.stall_timeout_blocks}


@router.get("/facts")
async def list_facts(
    kind: Optional[FactKind] = Query(default=None, description="Only facts of this kind"),
    runtime: BridgeRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    facts = runtime.watcher.facts(kind)
    return {"facts": [f.to_dict() for f in facts], "count": len(facts)}


@router.get("/submissions")
async def list_submissions(runtime: BridgeRuntime = Depends(get_runtime)) -> Dict[str, List[Dict[str, Any]]]:
    return {"submissions": [s.to_dict() for s in runtime.watcher.submissions()]}


@router.get("/estimate-gas")
async def estimate_bridge_gas(
    user: str = Query(..., description="Address that would call bridgeTokens"),
    amount: int = Query(..., gt=0, description="Amount in the custody token's smallest unit"),
    destination_chain_id: int = Query(..., alias="destinationChainId"),
    runtime: BridgeRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    try:
        estimate = await runtime.coordinator.estimate_bridge_gas(user, amount, destination_chain_id)
    except BridgeError as exc:
        raise_http_error(exc)
    return {"user": user.lower(), "amount": amount, "destinationChainId": destination_chain_id, **estimate}


# Owner endpoints: the relayer signs as the configured owner
@router.post("/force-receive/resolve")
async def resolve_force_receive(
    body: ResolveForceReceiveRequest,
    runtime: BridgeRuntime = Depends(get_runtime),
    _: bool = Depends(verify_admin_key),
) -> Dict[str, Any]:
    try:
        request = await runtime.coordinator.resolve_force_receive(
            runtime.config.owner_address, body.user, body.approve
        )
    except BridgeError as exc:
        raise_http_error(exc)
    return {"success": True, "approved": body.approve, "request": _serialize(request)}


@router.post("/submissions/{submission_id}/resubmit")
async def resubmit(
    submission_id: str,
    runtime: BridgeRuntime = Depends(get_runtime),
    _: bool = Depends(verify_admin_key),
) -> Dict[str, Any]:
    try:
        result = await runtime.coordinator.resubmit(submission_id)
    except BridgeError as exc:
        raise_http_error(exc)
    return {"success": True, "result": _serialize(result)}


@router.post("/sync/{user}")
async def sync_user(
    user: str,
    runtime: BridgeRuntime = Depends(get_runtime),
    _: bool = Depends(verify_admin_key),
) -> Dict[str, Any]:
    """Settle the user's open submissions and re-read their slot from the gateway."""
    try:
        request = await runtime.coordinator.sync_user(user)
        status = runtime.ledger.status(user)
    except BridgeError as exc:
        raise_http_error(exc)
    return {"user": user.lower(), "status": status.value, "request": _serialize(request)}
