"""
gomcp: capability RPC bridge between a chat client and a GTP Go engine.

Components:
- board/moves/sgf: board ledger, move notation and game-record extraction
- engine: subprocess command multiplexer (id-correlated GTP lines)
- session/analysis: tool operations over one owned game session
- protocol/rpc_server/rpc_client: envelopes, capability server and client
- llm_client/prompting/orchestrator: text-generation endpoint and the tool cycle
- web/cli: Flask bridge and command line
"""
__version__ = "1.0.0"
