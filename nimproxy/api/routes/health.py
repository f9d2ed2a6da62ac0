"""Health/status endpoint."""

from fastapi import Request

from ...lorebook import count_entries

SERVICE_NAME = "OpenAI to NVIDIA NIM Proxy"


async def health(request: Request) -> dict:
    """Report configuration flags and loaded lorebooks.

    GET /health
    """
    settings = request.app.state.settings
    sources = request.app.state.router.lore_sources
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "reasoning_display": settings.show_reasoning,
        "thinking_mode": settings.enable_thinking_mode,
        "lorebook_enabled": settings.enable_lorebook,
        "lorebooks_loaded": len(sources),
        "total_entries": count_entries(sources),
        "lorebook_titles": [source.title for source in sources],
    }
