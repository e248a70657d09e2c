# backend/wsgi.py
from pharmavault import create_app

app = create_app()
