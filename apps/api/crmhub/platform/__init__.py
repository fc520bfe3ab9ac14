"""Platform services shared by every domain module (security, persistence)."""
