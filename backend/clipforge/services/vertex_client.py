"""Vertex AI client wrapper using google-genai SDK.

Clients are created lazily per location and authenticate with Application
Default Credentials (GOOGLE_APPLICATION_CREDENTIALS may be set in .env).

Usage:
    from clipforge.services.vertex_client import get_vertex_client

    client = get_vertex_client()                    # default location
    client = get_vertex_client(location="global")   # global endpoint
"""

import os

from dotenv import load_dotenv
from google import genai

from clipforge.config import settings

load_dotenv()

_clients: dict[str, genai.Client] = {}

# Models only served from the global endpoint
GLOBAL_REGION_MODELS = {
    "gemini-3-pro-image-preview",
}


def location_for_model(model_id: str) -> str:
    """Return the Vertex AI location needed for a given model ID."""
    if model_id in GLOBAL_REGION_MODELS:
        return "global"
    return settings.google_cloud.location


def get_vertex_client(location: str | None = None) -> genai.Client:
    """Get or create a Vertex AI client for the given location.

    Args:
        location: GCP region (e.g., "us-central1", "global").
                  Defaults to settings.google_cloud.location.

    Raises:
        RuntimeError: If no Google Cloud project is configured
    """
    loc = location or settings.google_cloud.location
    project_id = settings.google_cloud.project_id or os.environ.get("GOOGLE_CLOUD_PROJECT", "")
    if not project_id:
        raise RuntimeError(
            "Google Cloud project not configured; set CLIPFORGE_GOOGLE_CLOUD__PROJECT_ID "
            "or google_cloud.project_id in config.yaml"
        )

    if loc not in _clients:
        _clients[loc] = genai.Client(
            vertexai=True,
            project=project_id,
            location=loc,
        )

    return _clients[loc]
