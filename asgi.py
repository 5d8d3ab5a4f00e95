"""
asgi.py -- Application assembly for the campus services.

Builds one service's app from its resolved settings. CAMPUS_SERVICE picks
the service (token, evaluation, grading); evaluation is the default.

Run with:  uvicorn asgi:app --reload
           CAMPUS_SERVICE=token uvicorn asgi:app --port 3001
"""

from api.main import build_settings, create_app
from core.env import resolve

app = create_app(build_settings(resolve("CAMPUS_SERVICE", prefix="", default="evaluation")))
