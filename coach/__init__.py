"""Coach agent: turn orchestration, tool dispatch and streaming."""
