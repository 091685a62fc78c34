"""
Workflow Kernel

State-machine runtime primitives for named business processes:
- Immutable workflow definitions (states, guarded transitions, actions)
- Mutable workflow instances with append-only history
- Persistence adapters (in-memory and SQLAlchemy)
- Structured logging and typed errors
"""

__version__ = "0.1.0"
