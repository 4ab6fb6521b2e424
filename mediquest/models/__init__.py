"""Pydantic models for flow inputs, outputs and API payloads."""
