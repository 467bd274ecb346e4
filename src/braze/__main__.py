from braze.cli import app

app()
