# backend/wsgi.py
from salecore import create_app

app = create_app()
