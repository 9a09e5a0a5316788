# backend/wsgi.py
from jewelbox import create_app

app = create_app()
