"""Runtime state: the per-session case store, case runs and chat sessions."""
