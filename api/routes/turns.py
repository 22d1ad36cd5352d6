"""
Public turn endpoints (no authentication).

Provides REST endpoints for:
- Booking a turn
- Self-service status lookup and cancellation by mobile number
- Display board (waiting list) and queue statistics
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status

from api.dependencies import get_turn_service
from api.models.turns import CreateTurnRequest
from queue_engine import ANONYMOUS, TurnService
from queue_engine.presentation import turn_to_dict, waiting_board_entry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/turns", tags=["turns"])

TurnServiceDep = Annotated[TurnService, Depends(get_turn_service)]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_turn(request: CreateTurnRequest, service: TurnServiceDep):
    """
    Book a turn at the end of the queue.

    **Errors:**
    - **400**: VALIDATION_ERROR
    - **409**: DUPLICATE_ACTIVE_TURN (the mobile number already waits)
    """
    turn = await service.create_turn(
        customer_name=request.customer_name,
        mobile_number=request.mobile_number,
        service_type=request.service_type,
        actor=ANONYMOUS,
    )
    return {
        "success": True,
        "data": {"turn": turn_to_dict(turn)},
        "message": f"تم تأكيد الدور {turn.turn_number}!",
    }


@router.get("/stats")
async def get_stats(service: TurnServiceDep):
    stats = await service.get_stats()
    return {
        "success": True,
        "data": {
            "waiting_count": stats.waiting_count,
            "average_wait_minutes": stats.average_wait_minutes,
            "estimated_wait_minutes": stats.estimated_wait_minutes,
        },
    }


@router.get("/waiting")
async def list_waiting(service: TurnServiceDep):
    """Display board: waiting turns in queue order, without contact details."""
    turns = await service.list_waiting()
    return {
        "success": True,
        "data": {"turns": [waiting_board_entry(t) for t in turns]},
    }


@router.get("/customer/{mobile_number}")
async def get_turn_by_mobile(mobile_number: str, service: TurnServiceDep):
    """Most recent turn for the mobile number, including completed and cancelled ones."""
    turn = await service.get_by_identity(mobile_number)
    return {"success": True, "data": {"turn": turn_to_dict(turn)}}


@router.put("/cancel/{mobile_number}")
async def cancel_turn_by_mobile(mobile_number: str, service: TurnServiceDep):
    """
    Customer cancels their own active turn.

    **Errors:**
    - **404**: TURN_NOT_FOUND (no active turn)
    - **409**: INVALID_TRANSITION
    """
    turn = await service.cancel_by_identity(mobile_number)
    return {
        "success": True,
        "data": {"turn": turn_to_dict(turn)},
        "message": "تم إلغاء دورك بنجاح",
    }


@router.get("/{turn_id}")
async def get_turn(turn_id: str, service: TurnServiceDep):
    turn = await service.get_by_id(turn_id)
    return {"success": True, "data": {"turn": turn_to_dict(turn)}}
