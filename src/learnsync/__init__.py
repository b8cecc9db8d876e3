"""learnsync - session and learning-progress synchronization core.

Packages:
- storage: redundant credential storage (SQLite, JSON file, memory)
- auth: session lifecycle and silent token refresh
- api: HTTP execution, error taxonomy, request deduplication
- catalog: course collection queries
- progress: lesson/course progress and playback sampling
"""

__version__ = "0.1.0"
