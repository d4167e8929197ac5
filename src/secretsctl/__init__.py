"""
secretsctl - command-line client for a hosted secrets service.

Read and manage secrets that live behind a remote API.

Features:
- secrets: list, get, set, delete and download secrets
- run: Run commands with secrets injected into the environment
- configure: Store a token, project and config per directory scope
- update: Keep the CLI itself up to date

Requires: an API token (see 'secretsctl configure set token=...')
"""

__version__ = "0.1.0"
