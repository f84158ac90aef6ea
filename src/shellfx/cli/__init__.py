"""Command-line front-end: script loading and the ``shellfx`` command."""
