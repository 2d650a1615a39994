"""Test suite for agent-kanban."""
