"""Command-line tools for DocVault.

- ``python -m docvault.cli <command>`` -- upload, list, search, chat and
  maintenance commands over the DocVault services.  See
  :mod:`docvault.cli.docvault_cli` for the full command list.
"""
