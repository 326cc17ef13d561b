# =============================================================================
# Services Package — Business Logic
# =============================================================================
#   - normalizer.py: uploads / web pages → plain text
#   - llm.py: multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - embedder.py: OpenAI-compatible embeddings
#   - model_output.py: tagged multi-stage JSON recovery
#   - summarizer.py: document summaries
#   - knowledge_store.py / ingestion.py: per-agent document storage
#   - tool_executor.py: outbound HTTP tool calls
#   - conversation.py: persisted chat turns
#   - identity.py / embed_access.py: users, public keys, origin policy
# =============================================================================
