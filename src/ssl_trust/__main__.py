from ssl_trust.cli import app

app(prog_name="ssl-trust")
