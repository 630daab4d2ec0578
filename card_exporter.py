import csv
import io
import json
import logging
import os
import re

logger = logging.getLogger("WikiDeck.export")


def card_set_to_csv(card_set):
    """Question,Answer header followed by one fully quoted row per card."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(["Question", "Answer"])
    for card in card_set.cards:
        writer.writerow([card.question, card.answer])
    return buf.getvalue().rstrip('\n')


def card_set_to_json(card_set):
    return json.dumps(card_set.to_dict(), indent=2, ensure_ascii=False)


def export_filename(card_set, fmt):
    stem = re.sub(r'[\s/\\]+', '_', card_set.title)
    return f"{stem}_flashcards.{fmt}"


def export_card_set(card_set, fmt, output_dir=".", log_callback=None):
    """Writes the card set as CSV or JSON and returns the file path."""
    if fmt == "csv":
        content = card_set_to_csv(card_set)
    elif fmt == "json":
        content = card_set_to_json(card_set)
    else:
        raise ValueError(f"Unsupported export format: {fmt}")

    path = os.path.join(output_dir, export_filename(card_set, fmt))
    with open(path, 'w', encoding='utf-8', newline='') as f:
        f.write(content)

    msg = f"Exported {len(card_set.cards)} cards to {path}"
    logger.info(msg)
    if log_callback:
        log_callback(msg)
    return path
