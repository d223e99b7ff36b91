"""auth/ -- Users, authentication and cookie trust for splkit.

Layer rule: auth/ imports from core/, db/, security/ and validators/.
It does NOT import from api/. api/ imports from auth/, not the other way
around; auth/dependencies.py is the only module that knows about FastAPI.
"""
