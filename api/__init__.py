"""api/ -- FastAPI application, HTTP transport models, and route handlers.

api/ is the only layer that imports from both auth/ and ioc/.
"""
