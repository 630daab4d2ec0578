import os
import time

TRUNCATION_MARKER = "... [Content truncated due to length]"
MAX_CONTENT_CHARS = 3000


class ExtractionError(Exception):
    """Raised when the LLM could not turn content into flashcards."""


class CardImportError(ValueError):
    """Raised when an imported file is rejected or cannot be parsed."""


class ImportStats:
    def __init__(self):
        self.metrics = {
            "start_time": time.time(),
            "end_time": None,
            "total_rows": 0,
            "skipped_rows": 0,
            "cards_imported": 0,
        }

    def increment_row_count(self):
        self.metrics["total_rows"] += 1

    def increment_skipped_row(self):
        self.metrics["skipped_rows"] += 1

    def add_imported_cards(self, count):
        self.metrics["cards_imported"] += count

    def skip_ratio(self):
        if not self.metrics["total_rows"]:
            return 0.0
        return self.metrics["skipped_rows"] / self.metrics["total_rows"]

    def finish(self):
        self.metrics["end_time"] = time.time()
        self.metrics["total_duration"] = self.metrics["end_time"] - self.metrics["start_time"]
        return self.metrics

    def get_summary(self):
        return (
            f"Import Completed in {self.metrics.get('total_duration', 0):.2f}s. "
            f"Rows: {self.metrics['total_rows']} (Skipped: {self.metrics['skipped_rows']}). "
            f"Cards: {self.metrics['cards_imported']} Imported."
        )


class CardValidator:
    @staticmethod
    def validate(card):
        """
        Validates a raw card entry from an imported file.
        Returns (is_valid, reason)
        """
        if not isinstance(card, dict):
            return False, "Invalid card"

        q = card.get('question')
        a = card.get('answer')

        if not isinstance(q, str) or not q.strip():
            return False, "missing a valid question"

        if not isinstance(a, str) or not a.strip():
            return False, "missing a valid answer"

        return True, ""


class ResourceGuard:
    MAX_FILE_SIZE_MB = 10
    EXTENSIONS = {"json": "json", "csv": "csv"}

    @staticmethod
    def check_file_size(size_bytes):
        if size_bytes > ResourceGuard.MAX_FILE_SIZE_MB * 1024 * 1024:
            raise CardImportError(f"File size too large. Maximum size is {ResourceGuard.MAX_FILE_SIZE_MB}MB.")

    @staticmethod
    def check_extension(filename, expected_type):
        expected_ext = ResourceGuard.EXTENSIONS.get(expected_type)
        if expected_ext is None:
            raise CardImportError(f"Unsupported file type: {expected_type}")

        extension = os.path.splitext(filename)[1].lower().lstrip('.')
        if extension != expected_ext:
            raise CardImportError(f"Please select a {expected_type.upper()} file (.{expected_ext})")

    @staticmethod
    def validate_file(size_bytes, filename, expected_type):
        """Gate run before any parsing: size first, then extension."""
        ResourceGuard.check_file_size(size_bytes)
        ResourceGuard.check_extension(filename, expected_type)

    @staticmethod
    def validate_path(filepath, expected_type):
        ResourceGuard.validate_file(os.path.getsize(filepath), os.path.basename(filepath), expected_type)


def truncate_content(content, max_length=MAX_CONTENT_CHARS):
    """
    Caps the text sent to the LLM. Over-long input is cut at max_length
    and tagged with TRUNCATION_MARKER so the cut is visible downstream.
    """
    if len(content) <= max_length:
        return content
    return f"{content[:max_length]}{TRUNCATION_MARKER}"
