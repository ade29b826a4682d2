# backend/wsgi.py
from fuelcash import create_app

app = create_app()
