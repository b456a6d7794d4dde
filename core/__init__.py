"""
Geopolitical Analyzer core package.

Modules
───────
errors    — error taxonomy (ConfigurationError, CredentialError, BackendError, ...)
models    — Pydantic data models (AnalysisRequest, StructuredAnalysis, AnalysisRecord, Citation)
backend   — Claude + web_search tool, returning tagged GroundedReply / BackendFailure results
pipeline  — prompt → backend → fence strip → parse → validate → citations → rendered text
storage   — key-value persistence (SQLite, in-memory)
history   — bounded, persisted analysis history (insert, list, load, delete, clear)
"""
