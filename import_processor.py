import json
import logging
import os
from datetime import datetime, timezone

from card_models import Card, CardSet, generate_card_id, utc_now
from pipeline_utils import CardImportError, CardValidator, ImportStats, ResourceGuard

logger = logging.getLogger("WikiDeck.import")

QUESTION_HEADERS = ('question', 'q')
ANSWER_HEADERS = ('answer', 'a')


def parse_csv_line(line):
    """
    Splits one CSV line into fields, honouring double-quoted fields and
    doubled ("") quote escapes. Never raises: malformed quoting is read
    the way the state machine sees it.
    """
    result = []
    current = []
    in_quotes = False
    i = 0

    while i < len(line):
        char = line[i]

        if char == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                # Escaped quote
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif char == ',' and not in_quotes:
            result.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1

    # Last field, including an empty one after a trailing comma
    result.append("".join(current))
    return result


def find_column_index(headers, possible_names):
    """Returns the index of the first header containing one of possible_names, or -1."""
    for i, header in enumerate(headers):
        header = header.lower().strip()
        if any(name in header for name in possible_names):
            return i
    return -1


def resolve_columns(headers):
    """Resolves (question_index, answer_index), falling back to columns 0 and 1."""
    q_index = find_column_index(headers, QUESTION_HEADERS)
    a_index = find_column_index(headers, ANSWER_HEADERS)
    return (q_index if q_index != -1 else 0,
            a_index if a_index != -1 else 1)


def _parse_created_at(value, now):
    if not isinstance(value, str) or not value:
        return now
    try:
        # fromisoformat on older interpreters rejects the trailing Z
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return now
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _non_blank_str(value, default):
    if isinstance(value, str) and value.strip():
        return value
    return default


def _build_json_card_set(content, id_factory, now):
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise CardImportError(f"Invalid JSON: {e.msg}") from e

    if not isinstance(data, dict):
        raise CardImportError("Invalid JSON format")

    raw_cards = data.get('cards')
    if not isinstance(raw_cards, list):
        raise CardImportError('JSON must contain a "cards" array')

    cards = []
    seen_ids = set()
    for index, entry in enumerate(raw_cards):
        if not isinstance(entry, dict):
            raise CardImportError(f"Invalid card at position {index + 1}")

        valid, reason = CardValidator.validate(entry)
        if not valid:
            raise CardImportError(f"Card at position {index + 1} is {reason}")

        card_id = entry.get('id')
        while not card_id or str(card_id) in seen_ids:
            card_id = id_factory()
        seen_ids.add(str(card_id))

        cards.append(Card(id=str(card_id), question=entry['question'].strip(), answer=entry['answer'].strip()))

    if not cards:
        raise CardImportError("No valid flashcards found in the file")

    return CardSet(
        title=_non_blank_str(data.get('title'), "Imported Flashcards"),
        source=_non_blank_str(data.get('source'), "Imported JSON file"),
        cards=cards,
        created_at=_parse_created_at(data.get('createdAt'), now),
    )


def parse_json_text(content, id_factory=generate_card_id, now=None, log_callback=None):
    """
    Parses and validates the text of a JSON card file.

    Expected shape: {"cards": [{"question", "answer", "id"?}], "title"?, "source"?, "createdAt"?}
    Any failure is reported as "Failed to parse JSON file: <reason>".
    """
    now = now or utc_now()
    try:
        card_set = _build_json_card_set(content, id_factory, now)
    except CardImportError as e:
        raise CardImportError(f"Failed to parse JSON file: {e}") from e

    msg = f"Imported {len(card_set.cards)} cards from JSON."
    logger.info(msg)
    if log_callback:
        log_callback(msg)
    return card_set


def _build_csv_card_set(content, id_factory, now, max_skip_ratio, log_callback, stats):
    lines = [line.strip() for line in content.split('\n')]
    lines = [line for line in lines if line]

    if len(lines) < 2:
        raise CardImportError("CSV file must contain at least a header row and one data row")

    header = parse_csv_line(lines[0])
    if len(header) < 2:
        raise CardImportError("CSV file must have at least 2 columns")

    q_index, a_index = resolve_columns(header)
    required_columns = max(q_index, a_index) + 1
    logger.debug(f"CSV columns resolved: question={q_index}, answer={a_index}")

    cards = []
    for i, line in enumerate(lines[1:], start=2):
        stats.increment_row_count()
        row = parse_csv_line(line)

        if len(row) < required_columns:
            reason = f"Row {i} has insufficient columns, skipping"
        else:
            question = row[q_index].strip()
            answer = row[a_index].strip()
            if question and answer:
                cards.append(Card(id=id_factory(), question=question, answer=answer))
                continue
            reason = f"Row {i} has empty question or answer, skipping"

        stats.increment_skipped_row()
        logger.warning(reason)
        if log_callback:
            log_callback(f"Warning: {reason}")

    if not cards:
        raise CardImportError("No valid flashcards found in the CSV file")

    if max_skip_ratio is not None and stats.skip_ratio() > max_skip_ratio:
        raise CardImportError(
            f"Too many invalid rows ({stats.metrics['skipped_rows']}/{stats.metrics['total_rows']} skipped)"
        )

    stats.add_imported_cards(len(cards))
    return CardSet(
        title=f"Imported CSV ({len(cards)} cards)",
        source="Imported CSV file",
        cards=cards,
        created_at=now,
    )


def parse_csv_text(content, id_factory=generate_card_id, now=None, max_skip_ratio=None, log_callback=None, import_stats=None):
    """
    Parses CSV text with a header row into a CardSet.

    Bad rows are skipped with a warning; the import fails only when no
    card survives, or when max_skip_ratio is set and the share of skipped
    rows exceeds it.
    """
    now = now or utc_now()
    stats = import_stats or ImportStats()
    try:
        card_set = _build_csv_card_set(content, id_factory, now, max_skip_ratio, log_callback, stats)
    except CardImportError as e:
        raise CardImportError(f"Failed to parse CSV file: {e}") from e
    finally:
        stats.finish()

    logger.info(stats.get_summary())
    if log_callback:
        log_callback(stats.get_summary())
    return card_set


def detect_file_type(filepath):
    extension = os.path.splitext(filepath)[1].lower().lstrip('.')
    if extension not in ResourceGuard.EXTENSIONS:
        raise CardImportError("Unsupported file type. Please select a JSON (.json) or CSV (.csv) file.")
    return extension


def import_file(filepath, expected_type=None, id_factory=generate_card_id, max_skip_ratio=None, log_callback=None):
    """
    Imports a card set from a .json or .csv file on disk.
    The size/extension gate runs before the file is read.
    """
    expected_type = expected_type or detect_file_type(filepath)

    try:
        ResourceGuard.validate_path(filepath, expected_type)
        with open(filepath, 'r', encoding='utf-8') as f:
            content = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise CardImportError(f"Failed to read file: {e}") from e

    if log_callback:
        log_callback(f"Importing {expected_type.upper()} file {os.path.basename(filepath)}...")

    if expected_type == "json":
        return parse_json_text(content, id_factory=id_factory, log_callback=log_callback)
    return parse_csv_text(content, id_factory=id_factory, max_skip_ratio=max_skip_ratio, log_callback=log_callback)
