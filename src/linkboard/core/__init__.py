"""Core game state: puzzles, rules, progress, sessions, and the completion ledger."""
