from consent_gateway.cli import app

app()
