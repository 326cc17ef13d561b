# =============================================================================
# Agents Package — Chat Turn Pipeline
# =============================================================================
#   - retriever.py: cosine ranking of processed documents → knowledge context
#   - planner.py: call / ask / none decision over the agent's HTTP tools
#   - composer.py: grounded, tool-based or classify-and-reply answer
#   - orchestrator.py: LangGraph graph wiring the three per turn
# =============================================================================
