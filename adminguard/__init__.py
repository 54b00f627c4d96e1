# adminguard/__init__.py
"""
Admin Guard: remote-policy access control and plugin/theme enforcement
for an administrative back office.

Submodules are not imported here. Serve with the app factory:
    uvicorn adminguard.main:create_app --factory
"""
