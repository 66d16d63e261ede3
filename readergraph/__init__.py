"""Event-sourced character relationship graph cache for an EPUB reader.

Usage:
    async with GraphApiClient("https://reader.example") as client:
        service = GraphService.create(client)
        state = await service.get_event_state(book_id=7, chapter_idx=3, event_idx=12)
"""

from readergraph.clients.graph_api import GraphApiClient
from readergraph.services.graph_service import BookBuildResult, BuildStatus, EventLocation, GraphService

__all__ = ["BookBuildResult", "BuildStatus", "EventLocation", "GraphApiClient", "GraphService"]
