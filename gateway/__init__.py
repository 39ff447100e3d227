"""
Tableau Relay - Gateway Package
=================================
The web layer in front of the relay core.

This package provides:
- FastAPI web application with CORS for the browser client
- Sign-in against Tableau and connected-app embed tokens
- Bearer credential extraction for every relayed call
- REST endpoints for project trees, view previews and exports

Architecture:
    main.py   -> FastAPI app creation, middleware, collaborator wiring
    auth.py   -> Embed token signing, credential dependency
    config.py -> Read config.yaml and .env
    routes.py -> All REST API endpoint handlers
"""
