# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines an APIRouter:
#   - agents.py: agent CRUD and embed publishing
#   - knowledge.py: document upload and URL ingestion
#   - tools.py: tool CRUD and direct execution
#   - conversations.py: threads and chat turns
#   - embed.py: public widget sessions and messages
#   - deps.py: repository, identity and provider dependencies
# =============================================================================
