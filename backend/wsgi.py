# backend/wsgi.py
from clinicstock import create_app

app = create_app()
