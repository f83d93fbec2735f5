"""
Oracle Chess package.

Components:
- session: SessionController, the single owner of game state and entry point for all input
- coordinator: at-most-one in-flight oracle query, with generation-stamped results
- oracle_client/move_validator: HTTP transport to the move oracle and best-move token parsing
- referee/ledger: python-chess rules adapter and the append-only move history
"""
# Package exports are intentionally minimal; import modules directly as needed.
