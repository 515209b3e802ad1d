"""WebSocket progress feed."""

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from kwiki.api.deps import get_app_context
from kwiki.state import AppContext

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ws"])


@router.websocket("/ws/{wiki_id:path}")
async def wiki_progress_socket(
    websocket: WebSocket,
    wiki_id: str,
    ctx: AppContext = Depends(get_app_context),
) -> None:
    """Send the current status of a wiki, then live progress until it finishes."""
    await websocket.accept()

    wiki = ctx.generator.get_wiki(wiki_id)
    if wiki is None:
        await websocket.send_json({"type": "error", "wiki_id": wiki_id, "error": "Wiki not found"})
        await websocket.close(code=1008)
        return

    await websocket.send_json(
        {
            "type": "status",
            "wiki_id": wiki.id,
            "status": wiki.status.value,
            "progress": wiki.progress,
            "error": wiki.error,
            "updated_at": wiki.updated_at.isoformat(),
        }
    )
    if wiki.status.is_terminal:
        await websocket.close()
        return

    queue = ctx.subscribe(wiki_id)
    try:
        while True:
            event = await queue.get()
            await websocket.send_json({"type": "progress", **event.to_dict()})
            if event.status.is_terminal:
                break
        await websocket.close()
    except WebSocketDisconnect:
        logger.info(f"WebSocket client for {wiki_id} disconnected")
    finally:
        ctx.unsubscribe(wiki_id, queue)
