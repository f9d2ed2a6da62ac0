"""Entry point: serve the OpenAI to NVIDIA NIM proxy with uvicorn.

Usage:
    python proxy.py
    uvicorn proxy:app --port 3000
"""

import uvicorn

from nimproxy.config_loader import load_config
from nimproxy.main import create_app
from nimproxy.settings import load_settings

settings = load_settings(load_config())
app = create_app(settings)


def main() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
