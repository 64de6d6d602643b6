"""ASGI entrypoint: `uvicorn jarvis.api.app:app`."""

import os

from jarvis.api.factory import create_app

app = create_app()


def main() -> None:
    """Serve the app; APP_ROLE picks public or worker routes."""
    import uvicorn

    uvicorn.run(
        "jarvis.api.app:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8080")),
        log_config=None,
    )
