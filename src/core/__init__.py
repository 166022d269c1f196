"""Core domain package for chattriage.

Core contains the analyzers, decision fusion and routing logic without any
Telegram, SQLite or LLM-specific code, keeping the business logic portable.
"""
