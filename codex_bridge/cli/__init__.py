"""CLI module for codex-bridge."""
