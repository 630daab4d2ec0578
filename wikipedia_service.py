"""Fetches a Wikipedia article and reduces it to plain text for card generation."""

import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request

from bs4 import BeautifulSoup

logger = logging.getLogger("WikiDeck.wikipedia")

API_URL = "https://en.wikipedia.org/w/api.php"
USER_AGENT = "WikiDeck/0.1 (flashcard generator)"

# Page furniture that carries no article prose
NOISE_SELECTORS = [
    '.mw-empty-elt', '.mw-editsection', '.reference', '.references', '.reflist',
    '.navbox', '.thumbcaption', '.mbox-image', '.mbox-text', 'table', '.infobox',
    '.sidebar', '.ambox', '.hatnote', '.metadata', '.noprint', '.mw-jump-link',
    '.mw-headline', 'style', 'script', 'noscript',
]


class WikipediaError(Exception):
    pass


def extract_title_from_url(url):
    """Returns the article title from a wikipedia.org URL, or None."""
    try:
        parsed = urllib.parse.urlparse(url)
    except ValueError:
        return None

    if not parsed.hostname or 'wikipedia.org' not in parsed.hostname:
        return None

    title = parsed.path.rstrip('/').split('/')[-1]
    return urllib.parse.unquote(title) or None


def extract_text_from_html(html):
    soup = BeautifulSoup(html, "html.parser")
    root = soup.select_one('#mw-content-text') or soup

    for selector in NOISE_SELECTORS:
        for el in root.select(selector):
            el.decompose()

    text = root.get_text(" ")
    text = re.sub(r'\[\d+\]', '', text)
    return re.sub(r'\s+', ' ', text).strip()


def fetch_wikipedia_content(url, timeout=20):
    """
    Fetches an article through the MediaWiki parse API.
    Returns {"title": ..., "content": ...}.
    """
    title = extract_title_from_url(url)
    if title is None:
        raise WikipediaError("Invalid Wikipedia URL")

    query = urllib.parse.urlencode({"action": "parse", "page": title, "format": "json", "prop": "text"})
    req = urllib.request.Request(f"{API_URL}?{query}", headers={"User-Agent": USER_AGENT})
    logger.info(f"Fetching Wikipedia article '{title}'")

    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            data = json.loads(response.read().decode('utf-8'))
    except urllib.error.HTTPError as e:
        raise WikipediaError(f"Failed to fetch Wikipedia content: HTTP {e.code}") from e
    except urllib.error.URLError as e:
        raise WikipediaError(f"Failed to fetch Wikipedia content: {e.reason}") from e
    except OSError as e:
        raise WikipediaError(f"Failed to fetch Wikipedia content: {e}") from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise WikipediaError("Failed to fetch Wikipedia content: response is not JSON") from e

    if 'error' in data:
        raise WikipediaError(f"Wikipedia API error: {data['error'].get('info', 'unknown error')}")

    parse = data.get('parse')
    if not parse:
        raise WikipediaError("Failed to parse Wikipedia content")

    return {
        "title": parse.get('title', title),
        "content": extract_text_from_html(parse.get('text', {}).get('*', '')),
    }
