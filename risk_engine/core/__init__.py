"""Shared configuration, enums, value types and exceptions."""
