# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API, separate from the ORM models in
# agentdesk/db/models.py so stored embeddings never leave the service.
# =============================================================================
