"""API endpoints for the conversation runtime."""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from turnwise import __version__
from turnwise.context import RuntimeContext
from turnwise.errors import ApprovalError, ConversationCleared, ConversationTargetNotFound, MaxToolTurnsExceeded
from turnwise.models.approval import ApprovalStatus, PermissionApproval, PermissionRequest
from turnwise.models.conversation import (
    ApprovalDecisionRequest,
    ConversationMessagesResponse,
    ConversationRequest,
    ConversationResponse,
    HealthResponse,
    ResetRequest,
)
from turnwise.models.session import Session
from turnwise.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

FALLBACK_RESPONSE = "I apologize, but I'm experiencing technical difficulties. Please try again."


def get_runtime(request: Request) -> RuntimeContext:
    return request.app.state.runtime


RuntimeDep = Annotated[RuntimeContext, Depends(get_runtime)]


def _require_session(runtime: RuntimeContext, session_id: str) -> Session:
    session = runtime.conversations.find_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {session_id}")
    return session


@router.post("/conversation", response_model=ConversationResponse, tags=["Conversation"])
async def handle_conversation(request: ConversationRequest, runtime: RuntimeDep) -> ConversationResponse:
    """Send a message and run the tool-call loop until the model answers."""
    service = runtime.conversations
    try:
        if request.session_id:
            logger.info(f"Validating existing session: {request.session_id}")
            session = service.find_session(request.session_id)
            if not session:
                logger.warning(f"Invalid session ID provided: {request.session_id}")
                raise HTTPException(status_code=400, detail=f"Invalid session ID: {request.session_id}")
        else:
            logger.info("Creating new session")
            session = service.get_or_create_session()

        session_id = session.session_id

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Session management error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to manage session") from e

    try:
        logger.info(f"Processing message for session {session_id}: {request.message[:50]}...")
        result = await service.process_message(request.message, session)
        logger.info(f"Generated response for session {session_id}: {result.message.content[:50]}...")
        return ConversationResponse(response=result.message.content, session_id=session_id, rounds=result.rounds)
    except ValueError as e:
        logger.warning(f"Message validation error for session {session_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e
    except MaxToolTurnsExceeded as e:
        logger.warning(f"Tool-call loop bound hit for session {session_id}: {e}")
        return ConversationResponse(
            response="I couldn't complete your request within the allowed number of tool steps.",
            session_id=session_id,
            rounds=e.max_rounds,
        )
    except ApprovalError as e:
        logger.warning(f"Approval did not complete for session {session_id}: {e}")
        return ConversationResponse(
            response="The requested action was not approved in time, so I stopped.", session_id=session_id
        )
    except ConversationCleared as e:
        logger.info(f"Conversation {session_id} was cleared while processing a message")
        raise HTTPException(status_code=409, detail=str(e)) from e
    except Exception as e:
        logger.error(f"Conversation processing error for session {session_id}: {e}", exc_info=True)
        return ConversationResponse(response=FALLBACK_RESPONSE, session_id=session_id)


@router.get(
    "/conversations/{session_id}/messages", response_model=ConversationMessagesResponse, tags=["Conversation"]
)
async def get_conversation_messages(session_id: str, runtime: RuntimeDep) -> ConversationMessagesResponse:
    """List the conversation's messages in chronological order."""
    session = _require_session(runtime, session_id)
    return ConversationMessagesResponse(session_id=session_id, messages=session.conversation.messages())


@router.post(
    "/conversations/{session_id}/reset", response_model=ConversationMessagesResponse, tags=["Conversation"]
)
async def reset_conversation(
    session_id: str, request: ResetRequest, runtime: RuntimeDep
) -> ConversationMessagesResponse:
    """Rewind the conversation to a message, dropping everything after it."""
    session = _require_session(runtime, session_id)
    try:
        await runtime.conversations.reset_conversation(session, request.message_id, request.inclusive)
    except ConversationTargetNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return ConversationMessagesResponse(session_id=session_id, messages=session.conversation.messages())


@router.delete("/conversations/{session_id}", status_code=204, tags=["Conversation"])
async def delete_conversation(session_id: str, runtime: RuntimeDep) -> Response:
    """Forget the session and its stored conversation."""
    if not runtime.conversations.clear_conversation(session_id):
        raise HTTPException(status_code=404, detail=f"Conversation not found: {session_id}")
    return Response(status_code=204)


@router.get("/approvals", response_model=list[PermissionRequest], tags=["Approvals"])
async def list_approvals(runtime: RuntimeDep) -> list[PermissionRequest]:
    """List permission requests waiting for a decision."""
    return runtime.approval_manager.pending_requests()


@router.post(
    "/approvals/{request_id}",
    response_model=PermissionApproval,
    tags=["Approvals"],
    responses={404: {"description": "Approval not found or already decided"}, 400: {"description": "Not a decision"}},
)
async def submit_approval(
    request_id: str, decision: ApprovalDecisionRequest, runtime: RuntimeDep
) -> PermissionApproval:
    """Approve or deny a pending permission request."""
    if decision.status is ApprovalStatus.PENDING:
        raise HTTPException(status_code=400, detail="Decision must be approved or denied")

    approval = PermissionApproval(status=decision.status, content=decision.content)
    if not runtime.approval_manager.complete_approval(request_id, approval):
        raise HTTPException(status_code=404, detail=f"Approval not found: {request_id}")
    return approval


@router.delete("/approvals/{request_id}", status_code=204, tags=["Approvals"])
async def cancel_approval(request_id: str, runtime: RuntimeDep) -> Response:
    """Cancel a pending permission request."""
    if not runtime.approval_manager.cancel_approval(request_id):
        raise HTTPException(status_code=404, detail=f"Approval not found: {request_id}")
    return Response(status_code=204)


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
