"""
Development launcher for the chat backend.

Serves `backend.main:app` with auto-reload on changes under `backend/`.
HOST and PORT come from the environment (defaults 0.0.0.0:8000); the
app itself reads the rest of its settings from backend/.env.

    python run.py
"""

import os

import uvicorn


def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    print(f"Chat API listening on http://{host}:{port} (docs at /docs)")
    uvicorn.run("backend.main:app", host=host, port=port, reload=True, reload_dirs=["backend"])


if __name__ == "__main__":
    main()
