import argparse
import logging
import sys

from dotenv import load_dotenv

from card_exporter import export_card_set
from card_extractor import generate_card_set
from import_processor import import_file
from llm_config import CONFIG_FILE, get_llm_config, get_proxy_settings, load_config
from pipeline_utils import CardImportError, ExtractionError
from proxy_server import run_server
from wikipedia_service import WikipediaError, fetch_wikipedia_content

logger = logging.getLogger("WikiDeck")


def setup_logging(debug_mode=False, log_file="session.log"):
    level = logging.DEBUG if debug_mode else logging.INFO
    logger.setLevel(level)
    # Prevent adding handlers multiple times if re-initialized
    if not logger.handlers:
        if log_file:
            try:
                file_handler = logging.FileHandler(log_file, encoding="utf-8")
                file_handler.setFormatter(logging.Formatter("%(asctime)s %(message)s", datefmt="[%Y-%m-%d %H:%M:%S]"))
                logger.addHandler(file_handler)
            except OSError as e:
                print(f"Warning: cannot write {log_file}: {e}", file=sys.stderr)

        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(logging.Formatter("%(message)s"))
        stream_handler.setLevel(level)
        logger.addHandler(stream_handler)
    return logger


def print_card_set(card_set, out=None):
    out = out or sys.stdout
    print(f"{card_set.title} ({card_set.source}) - {len(card_set.cards)} cards", file=out)
    for i, card in enumerate(card_set.cards, start=1):
        print(f"\n{i}. Q: {card.question}\n   A: {card.answer}", file=out)


def cmd_generate(args):
    if args.url:
        article = fetch_wikipedia_content(args.url)
        content, title, source = article["content"], article["title"], args.url
    else:
        if args.text_file:
            with open(args.text_file, 'r', encoding='utf-8') as f:
                content = f.read()
        else:
            content = args.text
        title, source = args.title or "Custom Flashcards", "Custom text"

    if not content.strip():
        raise ExtractionError("No content to generate flashcards from.")

    return generate_card_set(
        content,
        title=title,
        source=source,
        api_key=args.api_key,
        use_mock=args.mock,
        config=get_llm_config(args.config),
        log_callback=logger.info,
    )


def cmd_import(args):
    return import_file(args.path, max_skip_ratio=args.max_skip_ratio)


def cmd_proxy(args):
    target, port = get_proxy_settings(args.config)
    run_server(port=args.port or port, target_url=args.target or target)


def build_parser():
    parser = argparse.ArgumentParser(prog="wikideck", description="Turn Wikipedia articles or text into study flashcards")
    parser.add_argument("--config", default=CONFIG_FILE, help="Path to the JSON settings file")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate flashcards with the LLM")
    source = gen.add_mutually_exclusive_group(required=True)
    source.add_argument("--url", help="Wikipedia article URL")
    source.add_argument("--text", help="Text to turn into flashcards")
    source.add_argument("--text-file", help="File containing the text")
    gen.add_argument("--title", help="Title for custom text")
    gen.add_argument("--api-key", help="API key (overrides LLM_API_KEY)")
    gen.add_argument("--mock", action="store_true", help="Ask the proxy for its canned response")
    gen.set_defaults(handler=cmd_generate)

    imp = sub.add_parser("import", help="Import flashcards from a JSON or CSV file")
    imp.add_argument("path")
    imp.add_argument("--max-skip-ratio", type=float, default=None,
                     help="Fail the CSV import if more than this share of rows is skipped")
    imp.set_defaults(handler=cmd_import)

    for p in (gen, imp):
        p.add_argument("--export", choices=["csv", "json"], action="append", default=[],
                       help="Write the result in this format (repeatable)")
        p.add_argument("--output-dir", default=".")

    proxy = sub.add_parser("proxy", help="Run the local CORS proxy for LM Studio-style servers")
    proxy.add_argument("--port", type=int)
    proxy.add_argument("--target", help="Inference server base URL")
    proxy.set_defaults(handler=cmd_proxy)
    return parser


def main(argv=None):
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(args.debug or load_config(args.config).get("debug_mode", False))

    try:
        card_set = args.handler(args)
    except (ExtractionError, CardImportError, WikipediaError, OSError) as e:
        logger.error(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        return 130

    if card_set is None:
        return 0

    print_card_set(card_set)
    for fmt in args.export:
        export_card_set(card_set, fmt, args.output_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
