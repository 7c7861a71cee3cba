"""
Browser drivers.

The harness depends only on the PageDriver and BrowserSession protocols;
PlaywrightSession is the production implementation.
"""

from playbench.drivers.base import BrowserSession, PageDriver

__all__ = [
    "BrowserSession",
    "PageDriver",
]
