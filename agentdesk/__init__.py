# =============================================================================
# AgentDesk — Knowledge-Grounded Agent Chat Backend
# =============================================================================
# Users configure agents (instructions, tone, style), give them knowledge
# documents and HTTP tools, and chat with them directly or through an
# embeddable widget.
#
# Package structure:
#   agentdesk/
#   ├── api/          → FastAPI routers (agents, knowledge, tools,
#   │                    conversations, embed)
#   ├── agents/       → retriever, tool planner, composer and the LangGraph
#   │                    turn graph
#   ├── db/           → async engine, ORM models, repository
#   ├── models/       → Pydantic V2 request/response schemas
#   └── services/     → normalization, summarization, embedding, ingestion,
#                        tool execution, conversation turns, identity
# =============================================================================
