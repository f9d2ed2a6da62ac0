"""Models listing endpoint - OpenAI compatible."""

import logging
import time

from fastapi import Request

logger = logging.getLogger("nimproxy")


async def list_models(request: Request) -> dict:
    """List the model aliases in OpenAI API format.

    GET /v1/models
    """
    logger.info("Received models list request")

    settings = request.app.state.settings
    created = int(time.time())
    models = [
        {
            "id": model_name,
            "object": "model",
            "created": created,
            "owned_by": "nvidia-nim-proxy",
        }
        for model_name in settings.model_mapping
    ]

    return {
        "object": "list",
        "data": models
    }
