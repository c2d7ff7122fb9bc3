"""kubetemplate command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``kubetemplate`` script).
"""

from kubetemplate.cli.main import cli

__all__ = ["cli"]
