"""
Sanitization Utility Module
Scrubs values before they are logged or shipped off-process as metric metadata.
"""

import re
import unicodedata
from urllib.parse import urlsplit, urlunsplit

_ANSI_ESCAPE = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')

_QUOTED_SINGLE = re.compile(r"'[^']*'")
_QUOTED_DOUBLE = re.compile(r'"[^"]*"')
_NUMBER_LITERAL = re.compile(r'\b\d+\b')
_VALUES_CLAUSE = re.compile(r'VALUES\s*\([^)]+\)', re.IGNORECASE)


def sanitize_for_logging(text: str, max_length: int = 255) -> str:
    """
    Sanitize text for safe logging to prevent log injection (CRLF) and
    terminal manipulation.

    Args:
        text: The input string to sanitize.
        max_length: Maximum allowed length for the log entry (truncates if longer).

    Returns:
        Sanitized string safe for logging.
    """
    if not text:
        return ""

    text = unicodedata.normalize('NFKC', str(text))
    text = text.replace('\n', '\\n').replace('\r', '\\r')
    text = _ANSI_ESCAPE.sub('', text)
    text = "".join(ch for ch in text if ch == '\t' or ord(ch) >= 32)

    if len(text) > max_length:
        text = text[:max_length] + "..."

    return text


def sanitize_query(query: str) -> str:
    """
    Strip literal values out of a SQL statement so it can be recorded as
    metric metadata without carrying user data.

    Example:
        >>> sanitize_query("SELECT * FROM news WHERE id = 42 AND title = 'x'")
        "SELECT * FROM news WHERE id = *** AND title = '***'"
    """
    if not query:
        return ""
    query = _VALUES_CLAUSE.sub('VALUES (***)', query)
    query = _QUOTED_SINGLE.sub("'***'", query)
    query = _QUOTED_DOUBLE.sub('"***"', query)
    return _NUMBER_LITERAL.sub('***', query)


_CSV_FORMULA_PREFIXES = ('=', '+', '-', '@', '%', '|')
_CSV_CONTROL_PREFIXES = ('\t', '\r', '\n')


def sanitize_for_csv(value) -> str:
    """
    Neutralize spreadsheet formula injection in a CSV cell.

    SECURITY STORY: Exported reports get opened in spreadsheet tools. A metric
    or endpoint name such as ``=HYPERLINK(...)`` would otherwise execute as a
    formula. Prefixing a single quote makes the cell literal text. Leading
    whitespace does not hide a formula, so it is checked after stripping.
    """
    if value is None:
        return ""
    text = str(value)
    if not text:
        return ""
    if text.startswith(_CSV_CONTROL_PREFIXES) or text.lstrip().startswith(_CSV_FORMULA_PREFIXES):
        return "'" + text
    return text


def redact_url(url: str) -> str:
    """
    Remove credentials and the query string from a URL before logging it.

    SECURITY STORY: Webhook and analytics URLs often embed a token either as
    userinfo or as a query parameter. Logging "failed to POST <url>" would
    otherwise write that token to disk.
    """
    if not url:
        return ""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "[INVALID URL]"

    netloc = parts.netloc
    if "@" in netloc:
        netloc = "[REDACTED]@" + netloc.rsplit("@", 1)[1]
    query = "[REDACTED]" if parts.query else ""
    return urlunsplit((parts.scheme, netloc, parts.path, query, ""))
