"""HTTP surface: Starlette routes, request schemas and authentication."""
