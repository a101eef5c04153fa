"""Integration adapters for external systems (Google Sheets/Drive, Google OAuth, SMTP).

Keep these modules small and testable:
- No FastAPI request/response objects
- Blocking client calls wrapped for the event loop
- Pure IO + parsing helpers
"""
