"""Terminal UI for the ``cloudtop top`` dashboard."""

from cloudtop.tui.keys import KeyReader
from cloudtop.tui.render import render

__all__ = ["KeyReader", "render"]
