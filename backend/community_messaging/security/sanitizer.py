"""
Input sanitization for message fields and uploaded files.

Rejects:
- Null bytes and control characters (newlines/tabs allowed in bodies)
- Path traversal sequences in single-line fields and filenames
- Script/XSS payloads in subjects
"""
import re
from typing import Optional


class InputSanitizer:
    """Validates and sanitizes user input."""

    NULL_BYTE_PATTERN = re.compile(r'\x00')
    CONTROL_CHAR_PATTERN = re.compile(r'[\x00-\x08\x0b-\x0c\x0e-\x1f\x7f]')  # Except \t, \n, \r
    LINE_BREAK_PATTERN = re.compile(r'[\r\n]')
    PATH_TRAVERSAL_PATTERN = re.compile(r'\.\.[/\\]')
    SCRIPT_PATTERN = re.compile(r'<script|javascript:|onerror\s*=|onclick\s*=|<iframe|<embed', re.IGNORECASE)

    ALLOWED_CONTENT_TYPES = frozenset({
        'application/pdf',
        'application/msword',
        'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
        'application/vnd.ms-excel',
        'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        'text/plain',
        'text/csv',
        'image/jpeg',
        'image/png',
        'image/gif',
        'image/webp',
        'video/mp4',
    })

    @staticmethod
    def sanitize_string(value: str, max_length: Optional[int] = None, allow_newlines: bool = False) -> str:
        """
        Check a string for dangerous content.

        Raises:
            ValueError: If input contains dangerous patterns or is too long
        """
        if not isinstance(value, str):
            raise ValueError("Input must be string")

        if InputSanitizer.NULL_BYTE_PATTERN.search(value):
            raise ValueError("Null bytes not allowed")

        if InputSanitizer.CONTROL_CHAR_PATTERN.search(value):
            raise ValueError("Control characters not allowed")

        if not allow_newlines and InputSanitizer.LINE_BREAK_PATTERN.search(value):
            raise ValueError("Line breaks not allowed")

        if InputSanitizer.SCRIPT_PATTERN.search(value):
            raise ValueError("Script/XSS patterns not allowed")

        if max_length and len(value) > max_length:
            raise ValueError(f"Input exceeds max length of {max_length}")

        return value

    @staticmethod
    def sanitize_subject(value: str, max_length: int = 255) -> str:
        sanitized = InputSanitizer.sanitize_string(value, max_length=max_length)
        if InputSanitizer.PATH_TRAVERSAL_PATTERN.search(sanitized):
            raise ValueError("Path traversal patterns not allowed")
        return sanitized.strip()

    @staticmethod
    def sanitize_content(value: str, max_length: int = 50000) -> str:
        """Message content keeps its line structure; trailing spaces are dropped."""
        sanitized = InputSanitizer.sanitize_string(value, max_length=max_length, allow_newlines=True)
        lines = [line.rstrip() for line in sanitized.split('\n')]
        return '\n'.join(lines).strip('\n')

    @staticmethod
    def sanitize_filename(filename: str) -> str:
        """Reduce a client-supplied filename to a safe basename."""
        if not filename or len(filename) > 255:
            raise ValueError("Invalid filename length")

        filename = filename.replace('\\', '/').split('/')[-1]

        if '..' in filename:
            raise ValueError("Path traversal not allowed")

        filename = re.sub(r'[^a-zA-Z0-9._\-() ]', '', filename)
        filename = re.sub(r'[ ]{2,}', ' ', filename)
        filename = re.sub(r'[.]{2,}', '.', filename).strip()

        if not filename:
            raise ValueError("Filename becomes empty after sanitization")

        return filename

    @staticmethod
    def normalize_content_type(content_type: Optional[str]) -> str:
        """Lower-cased base type, or raise if it is not whitelisted."""
        base_type = (content_type or '').split(';')[0].strip().lower()
        if base_type not in InputSanitizer.ALLOWED_CONTENT_TYPES:
            raise ValueError(f"Content type not allowed: {base_type or 'unknown'}")
        return base_type
