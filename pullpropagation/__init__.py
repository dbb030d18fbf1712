"""Wrap pull-labelled Argo CD Applications in ManifestWorks and copy cluster status reports back onto them."""

__version__ = "0.1.0"