# Overview: WSGI entry point; also the FLASK_APP target for CLI commands.

from dukapos import create_app

app = create_app()
