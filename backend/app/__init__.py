"""
Lets-Go-WorkSpace Backend — Application Package Initializer
============================================================

What: Marks the `app` directory as a Python package.
Why:  Enables module imports like `from app.config import settings`.
Who:  Used by uvicorn (`app.main:app`), `python -m app`, and pytest.

Layout:
    config.py      Settings from environment / .env
    exceptions.py  AppError hierarchy (errors carry their HTTP status)
    middleware/    Security headers, errors, body parsing, request logging
    routes/        HTTP route handlers
    schemas/       Pydantic response envelopes
    main.py        Application factory
    server.py      Listener lifecycle: start, drain on signal, stop
"""

__version__ = "1.0.0"
