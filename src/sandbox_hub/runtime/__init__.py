"""Sandbox runtime: probe, streaming invocation and output classification."""
