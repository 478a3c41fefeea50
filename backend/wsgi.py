# backend/wsgi.py
from checkout_engine import create_app

app = create_app()
