from tdshape.cli import app

app(prog_name="tdshape")
