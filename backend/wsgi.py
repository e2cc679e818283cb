# backend/wsgi.py
from admin_console import create_app

app = create_app()
