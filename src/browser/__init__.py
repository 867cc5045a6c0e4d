"""
Browser - DOM and Network Capabilities

Abstract accessor interfaces consumed by the engine and the inference
analyzers, with adapters for static HTML (BeautifulSoup), live pages
(Playwright) and plain HTTP (httpx).
"""

from .accessor import (
    DOMAccessor, ElementHandle, NetworkCapability, NetworkResponse,
    InterceptedResponse, SelectorError,
)
from .soup_accessor import SoupDOMAccessor, SoupElement
from .http_network import HttpxNetwork, build_client
from .playwright_accessor import PlaywrightDOMAccessor, PlaywrightSession

__all__ = [
    'DOMAccessor',
    'ElementHandle',
    'NetworkCapability',
    'NetworkResponse',
    'InterceptedResponse',
    'SelectorError',
    'SoupDOMAccessor',
    'SoupElement',
    'HttpxNetwork',
    'build_client',
    'PlaywrightDOMAccessor',
    'PlaywrightSession',
]
