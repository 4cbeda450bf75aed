"""Allow ``python -m docvault.cli`` execution."""

from docvault.cli.docvault_cli import main

main()
