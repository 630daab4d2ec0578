import unittest
import sys
import os
import json
import tempfile
from datetime import datetime, timezone
from unittest.mock import MagicMock

# Add the parent directory to sys.path to allow importing from root
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from import_processor import (
    parse_csv_line,
    find_column_index,
    resolve_columns,
    parse_json_text,
    parse_csv_text,
    import_file,
)
from pipeline_utils import CardImportError
from tests.mocks import SequentialIds

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestParseCSVLine(unittest.TestCase):
    def test_simple_fields(self):
        self.assertEqual(parse_csv_line("a,b,c"), ["a", "b", "c"])

    def test_quoted_comma(self):
        self.assertEqual(parse_csv_line('"Hello, world",answer'), ["Hello, world", "answer"])

    def test_escaped_quote(self):
        self.assertEqual(parse_csv_line('"Say ""hi""",x'), ['Say "hi"', "x"])

    def test_quoted_newline(self):
        self.assertEqual(parse_csv_line('"line1\nline2",b'), ["line1\nline2", "b"])

    def test_trailing_empty_field(self):
        self.assertEqual(parse_csv_line("a,"), ["a", ""])

    def test_empty_line(self):
        self.assertEqual(parse_csv_line(""), [""])

    def test_unterminated_quote_does_not_raise(self):
        # Everything after the opening quote stays in one field
        self.assertEqual(parse_csv_line('"open,still open'), ["open,still open"])

    def test_round_trip_quoted_fields(self):
        fields = ['What is "ATP"?', "Energy, stored", "multi\nline", ""]
        line = ",".join('"' + f.replace('"', '""') + '"' for f in fields)
        self.assertEqual(parse_csv_line(line), fields)


class TestColumnResolution(unittest.TestCase):
    def test_find_column_index(self):
        self.assertEqual(find_column_index(["Term", "Question"], ["question", "q"]), 1)
        self.assertEqual(find_column_index(["  ANSWER  "], ["answer", "a"]), 0)
        self.assertEqual(find_column_index(["foo", "bar"], ["question"]), -1)

    def test_answer_resolved_question_falls_back(self):
        self.assertEqual(resolve_columns(["Col1", "Answer"]), (0, 1))
        self.assertEqual(find_column_index(["Col1", "Answer"], ["answer", "a"]), 1)
        self.assertEqual(find_column_index(["Col1", "Answer"], ["question", "q"]), -1)

    def test_swapped_columns(self):
        self.assertEqual(resolve_columns(["Answer", "Question"]), (1, 0))

    def test_positional_fallback(self):
        self.assertEqual(resolve_columns(["front", "back"]), (0, 1))


class TestParseJSON(unittest.TestCase):
    def test_valid_file(self):
        content = json.dumps({
            "title": "Biology",
            "source": "https://en.wikipedia.org/wiki/Cell",
            "createdAt": "2023-01-02T03:04:05Z",
            "cards": [
                {"id": "keep-me", "question": "  Q1 ", "answer": " A1 "},
                {"question": "Q2", "answer": "A2"},
            ],
        })
        card_set = parse_json_text(content, id_factory=SequentialIds(), now=NOW)

        self.assertEqual(card_set.title, "Biology")
        self.assertEqual(card_set.source, "https://en.wikipedia.org/wiki/Cell")
        self.assertEqual(card_set.created_at, datetime(2023, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        self.assertEqual([c.id for c in card_set.cards], ["keep-me", "card-1"])
        self.assertEqual(card_set.cards[0].question, "Q1")
        self.assertEqual(card_set.cards[0].answer, "A1")

    def test_defaults_backfilled(self):
        content = json.dumps({"cards": [{"question": "Q", "answer": "A", "id": ""}]})
        card_set = parse_json_text(content, id_factory=SequentialIds(), now=NOW)
        self.assertEqual(card_set.title, "Imported Flashcards")
        self.assertEqual(card_set.source, "Imported JSON file")
        self.assertEqual(card_set.created_at, NOW)
        self.assertEqual(card_set.cards[0].id, "card-1")

    def test_invalid_created_at_uses_now(self):
        content = json.dumps({"createdAt": "not a date", "cards": [{"question": "Q", "answer": "A"}]})
        card_set = parse_json_text(content, now=NOW)
        self.assertEqual(card_set.created_at, NOW)

    def test_ids_unique(self):
        content = json.dumps({"cards": [{"question": f"Q{i}", "answer": f"A{i}"} for i in range(25)]})
        card_set = parse_json_text(content)
        self.assertEqual(len(card_set.cards), 25)
        self.assertEqual(len({c.id for c in card_set.cards}), 25)

    def test_duplicate_ids_replaced(self):
        content = json.dumps({"cards": [
            {"id": "x", "question": "Q1", "answer": "A1"},
            {"id": "x", "question": "Q2", "answer": "A2"},
            {"question": "Q3", "answer": "A3"},
            {"id": "card-2", "question": "Q4", "answer": "A4"},
        ]})
        card_set = parse_json_text(content, id_factory=SequentialIds())
        ids = [c.id for c in card_set.cards]
        self.assertEqual(ids[0], "x")
        self.assertEqual(len(set(ids)), 4)

    def test_whitespace_only_question_rejected(self):
        content = json.dumps({"cards": [{"question": "Q", "answer": "A"}, {"question": "   ", "answer": "A"}]})
        with self.assertRaises(CardImportError) as cm:
            parse_json_text(content)
        self.assertIn("Card at position 2 is missing a valid question", str(cm.exception))

    def test_non_string_title_uses_default(self):
        content = json.dumps({"title": 123, "source": ["x"], "cards": [{"question": "Q", "answer": "A"}]})
        card_set = parse_json_text(content)
        self.assertEqual(card_set.title, "Imported Flashcards")
        self.assertEqual(card_set.source, "Imported JSON file")

    def test_missing_cards_array(self):
        with self.assertRaises(CardImportError) as cm:
            parse_json_text(json.dumps({"title": "No cards"}))
        self.assertIn("Failed to parse JSON file", str(cm.exception))
        self.assertIn('"cards" array', str(cm.exception))

    def test_top_level_not_object(self):
        with self.assertRaises(CardImportError) as cm:
            parse_json_text("[1, 2, 3]")
        self.assertIn("Invalid JSON format", str(cm.exception))

    def test_malformed_json(self):
        with self.assertRaises(CardImportError) as cm:
            parse_json_text("{not json")
        self.assertIn("Failed to parse JSON file", str(cm.exception))

    def test_invalid_card_position(self):
        content = json.dumps({"cards": [{"question": "Q", "answer": "A"}, {"question": "Q2"}]})
        with self.assertRaises(CardImportError) as cm:
            parse_json_text(content)
        self.assertIn("Card at position 2 is missing a valid answer", str(cm.exception))

    def test_non_object_card(self):
        with self.assertRaises(CardImportError) as cm:
            parse_json_text(json.dumps({"cards": ["oops"]}))
        self.assertIn("Invalid card at position 1", str(cm.exception))

    def test_empty_cards(self):
        with self.assertRaises(CardImportError) as cm:
            parse_json_text(json.dumps({"cards": []}))
        self.assertIn("No valid flashcards found in the file", str(cm.exception))


class TestParseCSV(unittest.TestCase):
    def test_well_formed_rows_in_order(self):
        content = "Question,Answer\nQ1,A1\n\"Q2, with comma\",A2\nQ3,\"A \"\"3\"\"\"\n"
        card_set = parse_csv_text(content, id_factory=SequentialIds(), now=NOW)

        self.assertEqual([c.question for c in card_set.cards], ["Q1", "Q2, with comma", "Q3"])
        self.assertEqual(card_set.cards[2].answer, 'A "3"')
        self.assertEqual([c.id for c in card_set.cards], ["card-1", "card-2", "card-3"])
        self.assertEqual(card_set.title, "Imported CSV (3 cards)")
        self.assertEqual(card_set.source, "Imported CSV file")
        self.assertEqual(card_set.created_at, NOW)

    def test_header_only(self):
        with self.assertRaises(CardImportError) as cm:
            parse_csv_text("Question,Answer")
        self.assertIn("at least a header row and one data row", str(cm.exception))
        self.assertIn("Failed to parse CSV file", str(cm.exception))

    def test_single_column_header(self):
        with self.assertRaises(CardImportError) as cm:
            parse_csv_text("Question\nWhat?")
        self.assertIn("at least 2 columns", str(cm.exception))

    def test_blank_lines_ignored(self):
        card_set = parse_csv_text("\n\nQuestion,Answer\n\n  Q1 , A1  \n\n")
        self.assertEqual(len(card_set.cards), 1)
        self.assertEqual(card_set.cards[0].question, "Q1")
        self.assertEqual(card_set.cards[0].answer, "A1")

    def test_bad_rows_skipped_with_warning(self):
        log = MagicMock()
        content = "Question,Answer\nonly-one-column\nQ2,\nQ3,A3"
        with self.assertLogs("WikiDeck.import", level="WARNING") as logs:
            card_set = parse_csv_text(content, log_callback=log)

        self.assertEqual(len(card_set.cards), 1)
        self.assertEqual(card_set.cards[0].question, "Q3")
        self.assertTrue(any("Row 2 has insufficient columns" in line for line in logs.output))
        self.assertTrue(any("Row 3 has empty question or answer" in line for line in logs.output))
        log.assert_any_call("Warning: Row 2 has insufficient columns, skipping")

    def test_resolved_columns_used(self):
        content = "Notes,Answer,Question\nx,Paris,Capital of France?"
        card_set = parse_csv_text(content)
        self.assertEqual(card_set.cards[0].question, "Capital of France?")
        self.assertEqual(card_set.cards[0].answer, "Paris")

    def test_all_rows_invalid(self):
        with self.assertRaises(CardImportError) as cm:
            parse_csv_text("Question,Answer\n,\nonly")
        self.assertIn("No valid flashcards found in the CSV file", str(cm.exception))

    def test_skip_ratio_threshold(self):
        content = "Question,Answer\nQ1,A1\nbad\nbad\nbad"
        # Disabled by default: partial success
        self.assertEqual(len(parse_csv_text(content).cards), 1)

        with self.assertRaises(CardImportError) as cm:
            parse_csv_text(content, max_skip_ratio=0.5)
        self.assertIn("Too many invalid rows (3/4 skipped)", str(cm.exception))

        self.assertEqual(len(parse_csv_text(content, max_skip_ratio=0.8).cards), 1)

    def test_windows_line_endings(self):
        card_set = parse_csv_text("Question,Answer\r\nQ1,A1\r\nQ2,A2\r\n")
        self.assertEqual([c.answer for c in card_set.cards], ["A1", "A2"])


class TestImportFile(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmpdir.cleanup()

    def write(self, name, content):
        path = os.path.join(self.tmpdir.name, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        return path

    def test_import_csv_by_extension(self):
        path = self.write("deck.csv", "Question,Answer\nQ,A\n")
        card_set = import_file(path)
        self.assertEqual(card_set.source, "Imported CSV file")
        self.assertEqual(len(card_set.cards), 1)

    def test_import_json_by_extension(self):
        path = self.write("deck.json", json.dumps({"cards": [{"question": "Q", "answer": "A"}]}))
        card_set = import_file(path)
        self.assertEqual(card_set.source, "Imported JSON file")

    def test_extension_mismatch_rejected_before_parsing(self):
        path = self.write("deck.csv", "irrelevant")
        with self.assertRaises(CardImportError) as cm:
            import_file(path, expected_type="json")
        self.assertIn("Please select a JSON file", str(cm.exception))

    def test_unsupported_extension(self):
        path = self.write("deck.txt", "Question,Answer\nQ,A")
        with self.assertRaises(CardImportError) as cm:
            import_file(path)
        self.assertIn("Unsupported file type", str(cm.exception))

    def test_missing_file(self):
        with self.assertRaises(CardImportError) as cm:
            import_file(os.path.join(self.tmpdir.name, "missing.csv"))
        self.assertIn("Failed to read file", str(cm.exception))


if __name__ == '__main__':
    unittest.main()
