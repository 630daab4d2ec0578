import json
import logging
import re
import socket
import http.client
import urllib.request
import urllib.error
import urllib.parse
from collections import namedtuple

from card_models import Card, CardSet, generate_card_id
from llm_config import get_llm_config
from pipeline_utils import ExtractionError, truncate_content, MAX_CONTENT_CHARS

logger = logging.getLogger("WikiDeck.extractor")

PROXY_BASE_URL = "http://localhost:3001/api/v1"
PLACEHOLDER_API_KEY = "not-needed"
LOCAL_HOSTS = ('localhost', '127.0.0.1')

TEMPERATURE = 0.7
MAX_TOKENS = 4000
DEFAULT_TIMEOUT = 120

SYSTEM_PROMPT = (
    "You are a helpful assistant that creates flashcards from educational content. "
    "Extract key concepts and create question-answer pairs that would be useful for studying. "
    "Focus on important facts, definitions, and concepts. "
    "Create between 10-20 flashcards depending on the content length. "
    "Format your response as a valid JSON object with a \"flashcards\" array "
    "containing objects with \"question\" and \"answer\" properties."
)

Endpoint = namedtuple('Endpoint', ['url', 'headers', 'uses_mock'])


def needs_cors_proxy(url):
    """True when the base URL points at a locally hosted inference server."""
    try:
        hostname = urllib.parse.urlparse(url).hostname
    except ValueError:
        return False
    return bool(hostname) and hostname.lower() in LOCAL_HOSTS


def resolve_endpoint(base_url, api_key="", use_mock=False, proxy_url=PROXY_BASE_URL):
    """
    Decides where the completion request goes and which headers it carries.

    Local servers (localhost/127.0.0.1) cannot be called cross-origin, so
    they are reached through the local proxy with a placeholder key when
    none was given. Remote APIs are called directly and only get an
    Authorization header when a key is available.
    """
    if needs_cors_proxy(base_url):
        root = proxy_url.rstrip('/')
        api_key = api_key or PLACEHOLDER_API_KEY
    else:
        root = base_url.rstrip('/')

    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"

    url = f"{root}/chat/completions"
    if use_mock:
        url += "?mock=true"
        headers["X-Use-Mock"] = "true"

    return Endpoint(url=url, headers=headers, uses_mock=use_mock)


def build_messages(content):
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": f"Create flashcards from the following content:\n\n{content}"},
    ]


def build_request_body(model, messages):
    return {
        "model": model,
        "messages": messages,
        "temperature": TEMPERATURE,
        "max_tokens": MAX_TOKENS,
        "stream": False,
    }


def call_chat_completion(endpoint, body, timeout=DEFAULT_TIMEOUT):
    """
    POSTs a chat-completion request and returns the decoded JSON response.
    Single attempt: callers decide whether to retry.
    """
    try:
        req = urllib.request.Request(
            endpoint.url,
            data=json.dumps(body).encode('utf-8'),
            headers=endpoint.headers,
            method='POST',
        )
        with urllib.request.urlopen(req, timeout=timeout) as response:
            raw = response.read().decode('utf-8')
    except urllib.error.HTTPError as e:
        try:
            error_body = e.read().decode('utf-8')
        except (OSError, UnicodeDecodeError):
            error_body = ""
        raise ExtractionError(f"API request failed: {e.code} {error_body}".rstrip()) from e
    except urllib.error.URLError as e:
        raise ExtractionError(f"Network error when connecting to {endpoint.url}: {e.reason}") from e
    except (socket.timeout, http.client.HTTPException, ConnectionError, ValueError) as e:
        raise ExtractionError(f"Network error when connecting to {endpoint.url}: {e}") from e

    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ExtractionError("Invalid response format from LLM: response body is not JSON") from e


def _message_content(response_data):
    try:
        return response_data['choices'][0]['message']['content']
    except (KeyError, IndexError, TypeError):
        return None


def _strip_code_fence(text):
    # Some local models wrap JSON in a Markdown block despite instructions
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r'^```[a-zA-Z]*\s*\n?', '', text, count=1)
        text = re.sub(r'\n?```\s*$', '', text, count=1)
    return text


def _is_text(value):
    return isinstance(value, str) and value.strip() != ""


def parse_flashcards_response(response_data, id_factory=generate_card_id, log_callback=None):
    """
    Unwraps choices[0].message.content and maps its "flashcards" array to Cards.
    Question and answer text is kept exactly as the model returned it.
    """
    content = _message_content(response_data)
    if content is None or content == "":
        raise ExtractionError("No response from LLM API")

    if isinstance(content, dict):
        # LMStudio can hand back an already-decoded object
        parsed = content
    else:
        try:
            parsed = json.loads(_strip_code_fence(str(content)))
        except json.JSONDecodeError as e:
            raise ExtractionError("Invalid response format from LLM") from e

    if not isinstance(parsed, dict) or not isinstance(parsed.get('flashcards'), list):
        raise ExtractionError("Invalid response format from LLM")

    cards = []
    for index, item in enumerate(parsed['flashcards']):
        if not isinstance(item, dict) or not _is_text(item.get('question')) or not _is_text(item.get('answer')):
            msg = f"Warning: Skipping flashcard {index + 1}, missing question or answer."
            logger.warning(msg)
            if log_callback:
                log_callback(msg)
            continue
        cards.append(Card(id=id_factory(), question=item['question'], answer=item['answer']))

    return cards


def extract_flashcards(content, api_key=None, use_mock=False, config=None, id_factory=generate_card_id, timeout=DEFAULT_TIMEOUT, proxy_url=PROXY_BASE_URL, log_callback=None):
    """
    Generates flashcards from content with one chat-completion call.

    Key precedence: explicit api_key, then the configured default, then a
    placeholder on proxied routes. Every failure surfaces as an
    ExtractionError reading "Failed to extract flashcards: <reason>".
    """
    try:
        config = config or get_llm_config()
        if not config.base_url:
            raise ExtractionError("API base URL is not configured. Please check your environment variables.")

        endpoint = resolve_endpoint(config.base_url, api_key or config.default_api_key, use_mock, proxy_url)

        truncated = truncate_content(content, MAX_CONTENT_CHARS)
        if len(truncated) != len(content):
            logger.debug(f"Content truncated from {len(content)} to {MAX_CONTENT_CHARS} characters.")

        body = build_request_body(config.model, build_messages(truncated))

        if log_callback:
            mode = " (mock mode)" if endpoint.uses_mock else ""
            log_callback(f"Sending {len(truncated)} characters to {endpoint.url}{mode}...")
        logger.debug(f"POST {endpoint.url} model={config.model}")

        response_data = call_chat_completion(endpoint, body, timeout=timeout)
        cards = parse_flashcards_response(response_data, id_factory=id_factory, log_callback=log_callback)
    except ExtractionError as e:
        logger.error(f"Extraction failed: {e}")
        raise ExtractionError(f"Failed to extract flashcards: {e}") from e

    if log_callback:
        log_callback(f"Completed. Generated {len(cards)} flashcards.")
    return cards


def generate_card_set(content, title, source="Custom text", **kwargs):
    """Runs extract_flashcards and wraps the result in a fresh CardSet."""
    cards = extract_flashcards(content, **kwargs)
    return CardSet(title=title, source=source, cards=cards)
