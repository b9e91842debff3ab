"""auth/ -- Request authentication and credential lifecycle package.

Layer rule: auth/ imports stdlib, third-party libraries, and core/ (the kernel).
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
