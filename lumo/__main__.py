from lumo.cli import cli

cli()
