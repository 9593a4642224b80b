"""documents/ -- Folders, files, notifications, activities and logs for AgentPro.

Layer rule: documents/ may import from core/ and auth/ (for Role, ScopeFilter
and the users table). It does NOT import from api/.
"""
