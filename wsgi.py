"""WSGI entry point for Gunicorn (gunicorn wsgi:app)."""
import os
import sys

# Ensure the project root is in the Python path
sys.path.insert(0, os.path.dirname(__file__))

from stockroom import create_app

# STOCKROOM_CONFIG selects the config class, e.g. config.TestConfig
app = create_app(os.getenv('STOCKROOM_CONFIG', 'config.Config'))

if __name__ == "__main__":
    app.run()
