"""
Shared fixtures for the recipe engine test suite.
"""
import os

os.environ.setdefault("TESTING", "1")

import pytest

from src.browser.soup_accessor import SoupDOMAccessor
from src.shared.config import EngineSettings


SEARCH_RESULTS_HTML = """
<html>
    <head><title>Search</title></head>
    <body>
        <header class="site-header">
            <nav class="main-nav">
                <a href="/genres/fantasy">Fantasy books and more</a>
                <a href="/login">Sign in to your account</a>
            </nav>
        </header>
        <div id="cookie-banner" class="cookie-consent">
            <div class="result">We use cookies to store and/or access information</div>
        </div>
        <main>
            <div class="book-list">
                <div class="result">
                    <img src="/covers/dune.jpg" alt="Dune">
                    <h3 class="title"><a href="/books/dune">Dune</a></h3>
                    <span class="author">Frank Herbert</span>
                </div>
                <div class="result">
                    <img src="/covers/dune-messiah.jpg" alt="Dune Messiah">
                    <h3 class="title"><a href="/books/dune-messiah">Dune Messiah</a></h3>
                    <span class="author">Frank Herbert</span>
                </div>
                <div class="result">
                    <img src="/covers/children-of-dune.jpg" alt="Children of Dune">
                    <h3 class="title"><a href="/books/children-of-dune">Children of Dune</a></h3>
                    <span class="author">Frank Herbert</span>
                </div>
            </div>
        </main>
        <footer class="footer"><a href="/about">About this website</a></footer>
    </body>
</html>
"""

INTERLEAVED_RESULTS_HTML = """
<html>
    <body>
        <section class="list">
            <article class="book"><h2>Alpha Book</h2><a href="/book/alpha">Alpha</a></article>
            <div class="ad">Sponsored content</div>
            <article class="book"><h2>Beta Book</h2><a href="/book/beta">Beta</a></article>
            <div class="ad">Sponsored content</div>
            <article class="book"><h2>Gamma Book</h2><a href="/book/gamma">Gamma</a></article>
        </section>
    </body>
</html>
"""


@pytest.fixture
def search_results_html():
    """Search results page with three consecutive result containers."""
    return SEARCH_RESULTS_HTML


@pytest.fixture
def interleaved_results_html():
    """Results interleaved with non-result siblings."""
    return INTERLEAVED_RESULTS_HTML


@pytest.fixture
def search_page(search_results_html):
    """Static accessor loaded with the search results page."""
    return SoupDOMAccessor(search_results_html, url="https://books.example.com/search?q=dune")


@pytest.fixture
def engine_settings():
    """Engine settings independent of the environment."""
    return EngineSettings(
        page_load_timeout_ms=5000,
        min_page_load_timeout_ms=1000,
        system_language="en",
        system_region="US",
        max_loop_iterations=50,
    )
